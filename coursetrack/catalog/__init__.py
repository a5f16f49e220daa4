"""Read-only course catalog collaborator (courses, modules, lessons)."""
