"""Authorization of inbound requests: export tokens and user sessions."""

from .bearer import BearerAuthenticator, export_token_required
from .session import load_session, session_required, set_session_cookie
