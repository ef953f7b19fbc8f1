# Supabase table: deployments
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py

"""
Expected Supabase table structure:
- id: uuid (primary key)
- user_id: uuid (foreign key to auth.users.id, not null)
- project: text (not null) - repository full name, e.g. "org/app"
- project_name: text (not null)
- branch: text (not null, default: 'main')
- dockerfile_path: text (nullable)
- port: integer (not null)
- namespace: text (nullable) - set when the deploy stage starts
- url: text (nullable) - set when the rollout is healthy
- status: text (not null, default: 'provisioning') - values: provisioning, building, deploying,
  running, deploy_failed, failed, destroyed
- error_message: text (nullable)
- created_at: timestamp (default: now())
- updated_at: timestamp (nullable)

Supabase table: profiles
- id: uuid (primary key, = auth.users.id)
- github_installation_id: bigint (nullable)
"""
