# Sacred Notes
#
# Modular package structure:
# - config.py: Settings and domain constants
# - logging.py: structlog configuration
# - utils.py: Exceptions, reference parsing and validation helpers
# - books.py: Bible book table and name resolution
# - models.py: Pydantic models
# - db.py: SQLite schema and shared connection
# - tree.py: Parent-pointer tree building and cycle detection
# - notes.py, backup.py, topics.py, inline_tags.py: Notes and their organization
# - systematic.py, loader.py: Systematic theology corpus and its loader
# - series.py, sessions.py, auth.py, bible.py: Series, study log, auth, Bible proxy
# - sermon.py: Composite sermon preparation helpers
# - tools.py: MCP tool handlers and server instance
# - api.py: FastAPI application
# - main.py: Entry points
