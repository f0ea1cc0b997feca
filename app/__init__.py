"""Voice Studio - API, voice worker and operator CLI."""
