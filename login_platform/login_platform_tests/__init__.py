"""
login_service test package

Covers the authentication/session-issuance engine of the login service:

- Credential verification and password hashing (`auth.py`)
- Token pair and server-side session strategies (`strategies.py`)
- Federation of Google/Kakao identities (`federation.py`, `oauth.py`)
- The HTTP flows in `main.py` driven through FastAPI's TestClient
"""
