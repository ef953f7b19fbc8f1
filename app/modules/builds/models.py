# Supabase table: builds
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py

"""
Expected Supabase table structure:
- id: uuid (primary key)
- user_id: uuid (foreign key to auth.users.id, not null)
- deployment_id: uuid (foreign key to deployments.id, unique, nullable)
  - one build links to at most one deployment; lets builds.select("*, deployments(*)") embed it
- repo_name: text (not null) - repository full name, e.g. "org/app"
- branch: text (not null)
- status: text (not null, default: 'queued') - values: queued, building, success, failed
- image_uri: text (nullable)
- logs: text (nullable) - diagnostics captured on failure
- created_at: timestamp (default: now())
- finished_at: timestamp (nullable)
"""
