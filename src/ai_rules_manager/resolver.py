"""Version resolution - turn a request's version constraint into a concrete version.

Registries that expose a VersionResolver (Git tags, semver ranges) get their
constraint resolved. Everything else installs the requested version verbatim.
"""

import logging

from .exceptions import ArmError
from .exceptions import VersionResolutionError
from .models import InstallRequest
from .protocols import VersionResolver

logger = logging.getLogger(__name__)


def resolve_request(request: InstallRequest, resolver: VersionResolver | None = None) -> InstallRequest:
    """
    Return a copy of request with resolved_version filled in.

    Args:
        request: Install request (left unchanged)
        resolver: Optional resolver for the request's registry

    Returns:
        The same request when already resolved, otherwise a resolved copy

    Raises:
        VersionResolutionError: If the resolver cannot satisfy the constraint
    """
    if request.resolved_version:
        return request

    if resolver is None:
        return request.model_copy(update={"resolved_version": request.version})

    try:
        resolved = resolver.resolve_version(request.ruleset, request.version)
    except ArmError:
        raise
    except Exception as e:
        raise VersionResolutionError(
            f"Failed to resolve {request.describe()}: {e}",
            context={"registry": request.registry, "ruleset": request.ruleset, "constraint": request.version},
        ) from e

    if not resolved:
        raise VersionResolutionError(
            f"No version of {request.registry}/{request.ruleset} satisfies '{request.version}'",
            context={"registry": request.registry, "ruleset": request.ruleset, "constraint": request.version},
        )

    logger.debug(f"Resolved {request.describe()} -> {resolved}")
    return request.model_copy(update={"resolved_version": resolved})
