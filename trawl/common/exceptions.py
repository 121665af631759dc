"""Exception types for batch, target and item failures.

Failures are split by how far they reach:

- Fatal errors (InputError, MissingCredentialError) abort the batch before any
  target runs. Nothing is persisted.
- Target errors (ResolutionError, BrowserLaunchError, NavigationError) are
  caught at the per-target boundary. The batch continues with the next target.
- Item errors (ItemExtractionError) are caught inside the pagination loop.
  The loop continues with the next item.

CAPTCHA challenges and cancellation are states, not errors, and have no
exception type here.
"""

from typing import Any


class TrawlException(Exception):
    """Base class for all trawl errors.

    Carries the target the failure happened on and an optional context dict
    so that status lines and logs can say what went wrong and where.
    """

    def __init__(
        self,
        message: str,
        target: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable description of the failure.
            target: The target (query, domain or URL) that was being worked on.
            context: Optional dict of additional context (selector, url, etc).
        """
        self.message = message
        self.target = target
        self.context = context or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the error message with context.

        Returns:
            Formatted error message string.
        """
        parts = [self.message]
        if self.target is not None:
            parts.append(f"Target: {self.target}")

        if self.context:
            parts.append("Context:")
            for key, value in self.context.items():
                parts.append(f"  {key}: {value}")

        return "\n".join(parts)


# =============================================================================
# Fatal errors
# =============================================================================


class FatalBatchError(TrawlException):
    """Base class for errors that abort a batch before it starts."""

    pass


class InputError(FatalBatchError):
    """Raised when the raw input or batch options are unusable.

    Examples: an empty target list, a backup run with neither full backup
    nor text-only export, a maps run with an out-of-range result limit.
    """

    pass


class MissingCredentialError(FatalBatchError):
    """Raised when a required external credential is not configured."""

    def __init__(self, credential: str) -> None:
        self.credential = credential
        super().__init__(
            f"Missing credential: {credential}",
            context={"credential": credential},
        )


# =============================================================================
# Target errors
# =============================================================================


class TargetError(TrawlException):
    """Base class for errors confined to a single target."""

    pass


class ResolutionError(TargetError):
    """Raised when a sitemap cannot be fetched or parsed.

    Attributes:
        sitemap_url: The sitemap document that failed.
    """

    def __init__(self, sitemap_url: str, reason: str) -> None:
        self.sitemap_url = sitemap_url
        self.reason = reason
        super().__init__(
            f"Could not resolve sitemap: {reason}",
            target=sitemap_url,
        )


class BrowserLaunchError(TargetError):
    """Raised when the browser process or context cannot be started."""

    pass


class NavigationError(TargetError):
    """Raised when a page cannot be loaded.

    Attributes:
        url: The URL that failed to load.
    """

    def __init__(
        self,
        url: str,
        reason: str,
        target: str | None = None,
    ) -> None:
        self.url = url
        self.reason = reason
        super().__init__(
            f"Navigation failed: {reason}",
            target=target or url,
            context={"url": url},
        )


# =============================================================================
# Item errors
# =============================================================================


class ItemExtractionError(TrawlException):
    """Raised when a single listing card or question cannot be extracted.

    Attributes:
        item: Short identifier of the item (card text, question).
        selector: The selector that did not match, if known.
    """

    def __init__(
        self,
        item: str,
        reason: str,
        selector: str | None = None,
    ) -> None:
        self.item = item
        self.selector = selector
        context = {"selector": selector} if selector else None
        super().__init__(
            f"Could not extract item '{item}': {reason}",
            context=context,
        )


# =============================================================================
# Control channel errors
# =============================================================================


class EngineBusyError(TrawlException):
    """Raised when a batch is started while another one is still running."""

    def __init__(self, running_mode: str) -> None:
        self.running_mode = running_mode
        super().__init__(
            f"A {running_mode} batch is already running",
            context={"running_mode": running_mode},
        )
