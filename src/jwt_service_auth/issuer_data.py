"""Issuer data loaders.

The validator consults an IssuerDataLoader for the policy of each token's
issuer. StaticIssuerDataLoader serves policies from a fixed mapping, which is
enough when the set of trusted issuers is part of the service configuration.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from .models import IssuerPolicy


class StaticIssuerDataLoader:
    """IssuerDataLoader backed by an in-memory mapping.

    Example:
        ```python
        loader = StaticIssuerDataLoader({
            "https://accounts.example.com": IssuerPolicy(mask=("sub", "iss")),
            "https://api.example.com": {"claims": {"tenant": "t1"}},
        })
        ```

    Attributes:
        _policies: Mapping issuer -> IssuerPolicy.
    """

    def __init__(self, policies: Mapping[str, IssuerPolicy | Mapping[str, Any]]) -> None:
        self._policies = {
            iss: policy if isinstance(policy, IssuerPolicy) else IssuerPolicy.from_mapping(policy)
            for iss, policy in policies.items()
        }

    async def load(self, iss: str | None) -> IssuerPolicy | None:
        if iss is None:
            return None
        return self._policies.get(iss)
