"""
Token provider contract consumed by the request builder and the cache.

Token acquisition (OAuth, proxy logins...) lives outside apiwatch: the core
only needs to know which declared parameter carries the token and where.
"""

from __future__ import annotations

import typing as t
from dataclasses import dataclass

import structlog

from apiwatch.models import ParameterLocation

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class TokenSettings:
    """
    Declared-token parameter name and carrier location.

    Parameters
    ----------
    name : str | None
        Parameter name carrying the token (e.g. ``Authorization`` or ``token``).
    location : ParameterLocation | None
        Where the token is carried.
    """

    name: str | None = None
    location: ParameterLocation | None = None

    def carries(self, *, name: str, location: ParameterLocation) -> bool:
        """
        Tell whether a declared parameter is satisfied by the token provider.

        Parameters
        ----------
        name : str
            Declared parameter name.
        location : ParameterLocation
            Declared parameter location.

        Returns
        -------
        bool
            ``True`` when the parameter is the token parameter.
        """
        if self.name is None or self.location is None:
            return False
        return self.location == location and self.name.lower() == name.lower()


@t.runtime_checkable
class TokenProvider(t.Protocol):
    settings: TokenSettings

    async def get_token(self, *, user: str, scope: str) -> str | None: ...


class StaticTokenProvider:
    """
    Serve pre-acquired tokens keyed by user.

    Parameters
    ----------
    tokens : typing.Mapping[str, str]
        Access token per user.
    settings : TokenSettings | None, optional
        Token carrier. Defaults to a bearer ``Authorization`` header.
    """

    def __init__(
        self,
        *,
        tokens: t.Mapping[str, str],
        settings: TokenSettings | None = None,
    ) -> None:
        self._tokens = dict(tokens)
        self.settings = settings or TokenSettings(
            name="Authorization", location=ParameterLocation.header
        )

    async def get_token(self, *, user: str, scope: str) -> str | None:
        token = self._tokens.get(user)
        if token is None and user:
            log.warning(event="No token available for user", user=user, scope=scope)
        return token


def apply_token(
    *,
    settings: TokenSettings,
    token: str,
    url: str,
    headers: dict[str, str],
) -> tuple[str, dict[str, str]]:
    """
    Attach a token to a request URL or header map.

    Parameters
    ----------
    settings : TokenSettings
        Token carrier.
    token : str
        Access token.
    url : str
        Request URL.
    headers : dict[str, str]
        Request headers; a new dict is returned.

    Returns
    -------
    tuple[str, dict[str, str]]
        URL and headers carrying the token.
    """
    headers = dict(headers)
    if settings.name is None:
        return url, headers
    if settings.location == ParameterLocation.query:
        separator = "&" if "?" in url else "?"
        return f"{url}{separator}{settings.name}={token}", headers
    if settings.location == ParameterLocation.header:
        value = f"Bearer {token}" if settings.name.lower() == "authorization" else token
        headers[settings.name] = value
    return url, headers
