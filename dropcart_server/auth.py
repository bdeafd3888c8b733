"""Credentials and session management for Dropcart."""

import json
import os
from pathlib import Path
from typing import Optional
import logging

import jwt

from .bag import canonicalize
from .models import AuthCredentials, SessionData, TransactionResult, TransactionState

logger = logging.getLogger(__name__)

DEFAULT_COUNTRY = "NL"


class AuthManager:
    """Holds the store credentials and persists the shopping session."""

    def __init__(
        self,
        session_file: Optional[str] = None,
        credentials: Optional[AuthCredentials] = None,
    ) -> None:
        """
        Initialize the authentication manager.

        Args:
            session_file: Path to store session data. Defaults to
                DROPCART_SESSION_FILE or ~/.dropcart_session.json
            credentials: Store credentials. Loaded from the environment if omitted.
        """
        if session_file is None:
            session_file = os.environ.get("DROPCART_SESSION_FILE") or str(
                Path.home() / ".dropcart_session.json"
            )
        self.session_file = session_file
        self.session: SessionData = self._load_session()
        self.credentials: Optional[AuthCredentials] = credentials or self._load_credentials_from_env()

    def _load_session(self) -> SessionData:
        """Load session data from file if it exists."""
        if os.path.exists(self.session_file):
            try:
                with open(self.session_file, "r") as f:
                    data = json.load(f)
                    return SessionData(**data)
            except (json.JSONDecodeError, ValueError) as e:
                logger.warning(f"Could not load session from {self.session_file}: {e}")
        return SessionData()

    def _save_session(self) -> None:
        """Save session data to file."""
        with open(self.session_file, "w") as f:
            json.dump(self.session.model_dump(mode="json"), f, indent=2)
        # Set restrictive permissions on session file
        os.chmod(self.session_file, 0o600)

    def _load_credentials_from_env(self) -> Optional[AuthCredentials]:
        """
        Load credentials from environment variables.

        - DROPCART_PUBLIC_KEY: store public API key (required)
        - DROPCART_COUNTRY: country of origin (optional, defaults to NL)
        """
        public_key = os.environ.get("DROPCART_PUBLIC_KEY")
        if not public_key:
            logger.debug("No DROPCART_PUBLIC_KEY found in environment")
            return None

        country = os.environ.get("DROPCART_COUNTRY", DEFAULT_COUNTRY)
        logger.info(f"Loaded Dropcart credentials from environment (country: {country})")
        return AuthCredentials(public_key=public_key, country=country)

    def set_credentials(self, public_key: str, country: str) -> bool:
        """
        Set store credentials once.

        Returns:
            False if credentials were already set (they are left unchanged)
        """
        if self.credentials is not None:
            logger.warning("Credentials already set, ignoring new credentials")
            return False
        self.credentials = AuthCredentials(public_key=public_key, country=country)
        return True

    def is_authenticated(self) -> bool:
        return self.credentials is not None

    def get_token(self) -> str:
        """Build the bearer token for the Authorization header."""
        if self.credentials is None:
            raise RuntimeError("No Dropcart credentials configured")
        return jwt.encode(
            {"iss": self.credentials.public_key},
            self.credentials.public_key,
            algorithm="HS256",
        )

    def get_country(self) -> str:
        return self.credentials.country if self.credentials else DEFAULT_COUNTRY

    def get_session(self) -> SessionData:
        """Get current session data."""
        return self.session

    def get_bag(self) -> str:
        return self.session.shopping_bag

    def set_bag(self, coding: str) -> None:
        """
        Store a new bag.

        Changing the bag discards any open transaction, since its reference
        and checksum were issued for the previous contents.
        """
        if coding != self.session.shopping_bag and self.session.state != TransactionState.NONE:
            logger.info("Bag changed, discarding open transaction")
            self._clear_transaction()
        self.session.shopping_bag = coding
        if coding and self.session.state == TransactionState.NONE:
            self.session.state = TransactionState.QUOTE
        elif not coding:
            self.session.state = TransactionState.NONE
        self._save_session()

    def record_transaction(self, result: TransactionResult) -> None:
        """Advance the stored checkout state from a transaction result."""
        fields = result.model_fields_set

        if "shopping_bag" in fields and result.shopping_bag is not None:
            renegotiated = canonicalize(result.shopping_bag)
            if renegotiated != self.session.shopping_bag:
                logger.info(f"Server changed bag: {self.session.shopping_bag!r} -> {renegotiated!r}")
            self.session.shopping_bag = renegotiated
        if "reference" in fields:
            self.session.reference = result.reference
        if "checksum" in fields:
            self.session.checksum = result.checksum

        if result.redirect:
            self.session.redirect = str(result.redirect)
            self.session.state = TransactionState.CONFIRMED
        elif result.is_final:
            self.session.state = TransactionState.FINAL
        elif self.session.reference is not None:
            self.session.state = TransactionState.PARTIAL

        logger.info(f"Transaction state: {self.session.state.value}")
        self._save_session()

    def _clear_transaction(self) -> None:
        self.session.reference = None
        self.session.checksum = None
        self.session.redirect = None
        self.session.state = TransactionState.QUOTE if self.session.shopping_bag else TransactionState.NONE

    def reset_transaction(self) -> None:
        """Forget the open transaction but keep the bag."""
        self._clear_transaction()
        self._save_session()

    def clear_session(self) -> None:
        """Clear the current session."""
        self.session = SessionData()
        if os.path.exists(self.session_file):
            os.remove(self.session_file)
