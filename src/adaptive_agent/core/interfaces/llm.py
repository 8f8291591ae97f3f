"""
Completion Provider Protocol

The pipeline knows the model only through this protocol: a function from
(prompt, mode, credentials) to text that may fail. Implementations must
raise ProviderError (with a normalized ``code``) on transport, auth, quota
or timeout failures and must never return partial text on failure.
"""

from typing import Any, Protocol


class CompletionProviderProtocol(Protocol):
    """
    Protocol for text-completion providers.

    ``mode`` selects a model profile (e.g. "code", "chat", "fallback");
    ``credentials`` are opaque and passed through untouched.
    """

    async def complete(
        self,
        prompt: str,
        mode: str,
        credentials: dict[str, Any] | None = None,
    ) -> str:
        """
        Complete a prompt.

        Args:
            prompt: Instruction text
            mode: Provider mode / model alias
            credentials: Opaque provider credentials

        Returns:
            Completion text

        Raises:
            ProviderError: If the call fails
        """
        ...
