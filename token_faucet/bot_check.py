# bot_check.py
from typing import Optional

import requests

from .errors import NetworkError

SITEVERIFY_URL = "https://www.google.com/recaptcha/api/siteverify"


class BotVerifier:
    def verify(self, token: str, client_ip: Optional[str] = None) -> bool:
        raise NotImplementedError


class RecaptchaVerifier(BotVerifier):
    """
    Server-side reCAPTCHA check (v2 checkbox or v3 score).

    Returns False for a rejected or low-score token. Raises NetworkError when
    the verification service cannot be reached or answers with garbage, so
    the caller can report a retryable failure instead of blaming the user.
    """

    def __init__(
        self,
        secret_key: str,
        min_score: float = 0.5,
        timeout: float = 30.0,
        verify_url: str = SITEVERIFY_URL,
        session: Optional[requests.Session] = None,
    ):
        self.secret_key = secret_key
        self.min_score = min_score
        self.timeout = timeout
        self.verify_url = verify_url
        self.session = session or requests.Session()

    def verify(self, token: str, client_ip: Optional[str] = None) -> bool:
        if not token:
            return False

        payload = {"secret": self.secret_key, "response": token}
        if client_ip:
            payload["remoteip"] = client_ip
        try:
            resp = self.session.post(self.verify_url, data=payload, timeout=self.timeout)
            resp.raise_for_status()
            result = resp.json()
        except (requests.RequestException, ValueError) as e:
            print(f"[recaptcha] verification request failed: {type(e).__name__}: {e}")
            raise NetworkError("bot verification service unreachable", detail=str(e)) from e

        if not isinstance(result, dict) or not result.get("success"):
            codes = result.get("error-codes") if isinstance(result, dict) else None
            print(f"[recaptcha] verification failed: {codes}")
            return False

        # v3 tokens carry a score; v2 tokens do not
        score = result.get("score")
        if score is None:
            return True
        try:
            score = float(score)
        except (TypeError, ValueError):
            print(f"[recaptcha] unusable score in response: {score!r}")
            return False
        if score < self.min_score:
            print(f"[recaptcha] score too low: {score}")
            return False
        return True
