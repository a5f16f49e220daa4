"""Auth collaborator: bearer token verification and user directory."""
