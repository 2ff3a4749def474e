"""ABOUTME: Bot challenge verification for login and two-factor forms
ABOUTME: Verifies reCAPTCHA v3 tokens over HTTP and fails closed on any transport or parsing problem"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

import requests

from memberauth.config import RecaptchaCfg

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BotVerification:
    accepted: bool
    score: float = 0.0
    error: str = ""


class BotChallengeVerifier(ABC):
    """Checks a client-side bot challenge token for an expected action."""

    @abstractmethod
    def verify(self, token: str | None, expected_action: str, client_ip: str | None = None) -> BotVerification:
        pass


class RecaptchaVerifier(BotChallengeVerifier):
    """Verifies Google reCAPTCHA v3 tokens against the siteverify endpoint."""

    def __init__(self, cfg: RecaptchaCfg, session: requests.Session | None = None):
        self.cfg = cfg
        self.session = session or requests.Session()

    def verify(self, token: str | None, expected_action: str, client_ip: str | None = None) -> BotVerification:
        if not token:
            logger.warning("reCAPTCHA verification failed: token is missing")
            return BotVerification(accepted=False, error="reCAPTCHA token is required")

        data = {"secret": self.cfg.secret_key, "response": token}
        if client_ip:
            data["remoteip"] = client_ip

        try:
            response = self.session.post(self.cfg.verify_url, data=data, timeout=self.cfg.timeout_seconds)
            response.raise_for_status()
            body = response.json()
            score = float(body.get("score") or 0.0)
        except (requests.RequestException, ValueError, TypeError, AttributeError) as e:
            # a malformed reply is treated like an unreachable service
            logger.error(f"reCAPTCHA verification request failed: {e}")
            return BotVerification(accepted=False, error="Failed to verify reCAPTCHA")

        if not body.get("success"):
            errors = ", ".join(body.get("error-codes") or []) or "Unknown error"
            logger.warning(f"reCAPTCHA verification failed: {errors}")
            return BotVerification(accepted=False, score=score, error=f"reCAPTCHA verification failed: {errors}")

        action = body.get("action")
        if expected_action and action != expected_action:
            logger.warning(f"reCAPTCHA action mismatch. Expected: {expected_action}, got: {action}")
            return BotVerification(accepted=False, score=score, error="reCAPTCHA action mismatch")

        if score < self.cfg.minimum_score:
            logger.warning(f"reCAPTCHA score too low. Score: {score:.2f}, minimum: {self.cfg.minimum_score:.2f}")
            return BotVerification(accepted=False, score=score, error=f"reCAPTCHA score too low: {score:.2f}")

        logger.info(f"reCAPTCHA verification successful. Action: {action}, score: {score:.2f}")
        return BotVerification(accepted=True, score=score)


class NullBotVerifier(BotChallengeVerifier):
    """Accepts every non-empty token. For development with RECAPTCHA_ENABLED=false."""

    def verify(self, token: str | None, expected_action: str, client_ip: str | None = None) -> BotVerification:
        if not token:
            return BotVerification(accepted=False, error="reCAPTCHA token is required")
        return BotVerification(accepted=True, score=1.0)


def get_bot_verifier(cfg: RecaptchaCfg | None = None) -> BotChallengeVerifier:
    cfg = cfg or RecaptchaCfg.from_env()
    if not cfg.enabled:
        logger.warning("reCAPTCHA is disabled; bot challenges only check that a token is present")
        return NullBotVerifier()
    return RecaptchaVerifier(cfg)
