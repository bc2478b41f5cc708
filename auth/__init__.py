"""
auth — identifies the member behind a request.

Provides:
  • Signed session token verification
  • ``get_current_user_id`` / ``get_optional_user_id`` FastAPI dependencies
"""
