"""
Exception types for the buildpack integration harness.

Every error raised by the harness itself derives from HarnessError so test
suites can catch harness failures separately from assertion failures.
Network errors from the retry client are deliberately not wrapped.
"""


class HarnessError(Exception):
    """Base exception for harness lifecycle failures."""

    pass


class ContainerRuntimeError(HarnessError):
    """Raised when the Docker daemon cannot be reached or used."""

    pass


class ProxyRunnerError(HarnessError):
    """Raised for mock upstream proxy lifecycle failures."""

    pass


class RouterRunnerError(HarnessError):
    """Raised for router container lifecycle failures."""

    pass


class AppRunnerError(HarnessError):
    """
    Raised by AppRunner for misuse or lifecycle failures.

    Provides actionable error messages for test debugging.
    """

    pass
