from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict


class DispatchRequest(BaseModel):
    """
    Request envelope from the presentation layer.

    `params` and `actor` are deliberately untyped here; the dispatcher
    validates them per operation and answers with a ValidationFailed
    envelope instead of a 422.
    """

    model_config = ConfigDict(extra="ignore")

    domain: str
    action: str
    params: Any = None
    actor: Any = None
