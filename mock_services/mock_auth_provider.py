"""
mock_auth_provider.py — Mock Implementation of the Identity Provider (REST API)

This module provides a simulated identity provider for local development of the
order service. It exposes a small FastAPI application that answers token
verification requests the way the real provider does.

Simulation Scenarios:
    • Valid token: "tok_<subject-id>" → user payload with that id
    • Rejected token: starts with "tok_expired_" → HTTP 401
    • Provider outage: starts with "tok_flaky_" → HTTP 503
    • Anything else → HTTP 401

Endpoints:
    GET /auth/v1/user — Returns the user behind the bearer token.

Port:
    Default: 9999 (HTTP)
"""

from fastapi import FastAPI, Header, HTTPException
import logging

app = FastAPI(title="Mock Identity Provider")
logging.basicConfig(level=logging.INFO)


@app.get("/auth/v1/user")
def get_user(authorization: str = Header(...)):
    """
    Resolves a bearer token to a user.

    Args:
        authorization (str): The 'Authorization: Bearer <token>' header.

    Returns:
        dict: User payload with 'id', 'email', 'aud' and 'user_metadata'.

    Raises:
        HTTPException(401): If the token is malformed or rejected.
        HTTPException(503): If the token simulates a provider outage.
    """
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.startswith("tok_"):
        logging.warning("[AUTH] Malformed token rejected.")
        raise HTTPException(status_code=401, detail={"msg": "invalid JWT"})

    if token.startswith("tok_expired_"):
        logging.warning("[AUTH] Expired token rejected.")
        raise HTTPException(status_code=401, detail={"msg": "token is expired"})

    if token.startswith("tok_flaky_"):
        logging.error("[AUTH] Simulating provider outage.")
        raise HTTPException(status_code=503, detail={"msg": "service unavailable"})

    subject_id = token[len("tok_"):]
    logging.info(f"[AUTH] Token verified for subject {subject_id}.")
    return {
        "id": subject_id,
        "email": f"{subject_id}@example.com",
        "aud": "authenticated",
        "user_metadata": {"name": subject_id.capitalize()},
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=9999)
