"""Cookie mutations expressed as data, applied by whoever builds the response."""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Literal

from starlette.responses import Response


@dataclass(frozen=True)
class CookieDirective:
    name: str
    value: str
    max_age: int | None = None
    http_only: bool = True
    secure: bool = False
    same_site: Literal["lax", "strict", "none"] = "lax"
    path: str = "/"

    @property
    def is_delete(self) -> bool:
        return self.max_age == 0

    @classmethod
    def delete(cls, name: str, *, secure: bool = False, path: str = "/") -> "CookieDirective":
        return cls(name=name, value="", max_age=0, secure=secure, path=path)


def apply_cookie_directives(
    response: Response, directives: Iterable[CookieDirective]
) -> Response:
    for directive in directives:
        response.set_cookie(
            key=directive.name,
            value=directive.value,
            max_age=directive.max_age,
            httponly=directive.http_only,
            secure=directive.secure,
            samesite=directive.same_site,
            path=directive.path,
        )
    return response
