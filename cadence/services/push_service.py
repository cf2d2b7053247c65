from __future__ import annotations

import logging
from typing import Protocol

import firebase_admin
from firebase_admin import credentials, exceptions, messaging

logger = logging.getLogger(__name__)


class PushDeliveryError(Exception):
    def __init__(self, code: str, message: str) -> None:
        self.code = code
        super().__init__(message)


class PushSender(Protocol):
    def send(self, *, token: str, title: str, body: str) -> str: ...


class FirebasePushSender:
    """FCM delivery through firebase-admin using application default credentials."""

    def __init__(self, *, project_id: str) -> None:
        try:
            self._app = firebase_admin.get_app()
        except ValueError:
            logger.info("Initializing Firebase app project_id=%s", project_id)
            self._app = firebase_admin.initialize_app(credentials.ApplicationDefault(), {"projectId": project_id})

    def send(self, *, token: str, title: str, body: str) -> str:
        message = messaging.Message(notification=messaging.Notification(title=title, body=body), token=token)
        try:
            message_id = messaging.send(message, app=self._app)
        except messaging.UnregisteredError as exc:
            raise PushDeliveryError("registration-token-not-registered", str(exc)) from exc
        except exceptions.InvalidArgumentError as exc:
            raise PushDeliveryError("invalid-registration-token", str(exc)) from exc
        except exceptions.FirebaseError as exc:
            raise PushDeliveryError("unknown", str(exc)) from exc
        logger.debug("Push delivered message_id=%s", message_id)
        return message_id


def build_push_sender(project_id: str | None) -> PushSender | None:
    if not project_id:
        logger.info("Push notifications disabled; firebase_project_id is not set")
        return None
    return FirebasePushSender(project_id=project_id)
