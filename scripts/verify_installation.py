#!/usr/bin/env python3
"""Mneme Installation Verification Script.

Checks that Mneme's dependencies import, configuration loads, ChromaDB is
reachable and API keys for the language model and embeddings are present.
"""

from __future__ import annotations

import asyncio
import sys

# Colors for output
GREEN = "\033[0;32m"
RED = "\033[0;31m"
YELLOW = "\033[1;33m"
CYAN = "\033[0;36m"
NC = "\033[0m"


def print_header(text: str) -> None:
    """Print a formatted header."""
    print(f"\n{CYAN}{'=' * 60}{NC}")
    print(f"{CYAN}{text}{NC}")
    print(f"{CYAN}{'=' * 60}{NC}\n")


def print_check(name: str, passed: bool, details: str = "") -> None:
    """Print a check result."""
    status = f"{GREEN}✓{NC}" if passed else f"{RED}✗{NC}"
    print(f"{status} {name}")
    if details:
        print(f"  {details}")


class VerificationResults:
    """Track verification results."""

    def __init__(self) -> None:
        self.passed: list[str] = []
        self.failed: list[tuple[str, str]] = []
        self.warnings: list[str] = []

    def add_pass(self, name: str) -> None:
        self.passed.append(name)
        print_check(name, True)

    def add_fail(self, name: str, reason: str) -> None:
        self.failed.append((name, reason))
        print_check(name, False, reason)

    def add_warning(self, text: str) -> None:
        self.warnings.append(text)
        print(f"{YELLOW}⚠ {text}{NC}")

    def print_summary(self) -> None:
        """Print verification summary."""
        print_header("VERIFICATION SUMMARY")

        print(f"{GREEN}Passed: {len(self.passed)}{NC}")

        if self.failed:
            print(f"\n{RED}Failed: {len(self.failed)}{NC}")
            for name, reason in self.failed:
                print(f"  ✗ {name}")
                print(f"    {reason}")

        if self.warnings:
            print(f"\n{YELLOW}Warnings: {len(self.warnings)}{NC}")
            for warning in self.warnings:
                print(f"  ⚠ {warning}")

        print()


def verify_python_version(results: VerificationResults) -> None:
    """Mneme needs Python 3.11+."""
    print_header("VERIFYING PYTHON VERSION")

    version = ".".join(str(v) for v in sys.version_info[:3])
    if sys.version_info >= (3, 11):
        results.add_pass(f"Python {version}")
    else:
        results.add_fail(f"Python {version}", "Python 3.11 or newer is required")


def verify_python_imports(results: VerificationResults) -> None:
    """Verify that third-party dependencies and Mneme's modules import."""
    print_header("VERIFYING PYTHON IMPORTS")

    modules = [
        ("pydantic", "Pydantic"),
        ("pydantic_settings", "Pydantic settings"),
        ("yaml", "PyYAML"),
        ("httpx", "HTTPX"),
        ("openai", "OpenAI client"),
        ("numpy", "NumPy"),
        ("chromadb", "ChromaDB client"),
        ("click", "Click"),
        ("rich", "Rich"),
        ("mneme.config", "Configuration"),
        ("mneme.brain.llm_clients", "LLM clients"),
        ("mneme.memory.manager", "Memory manager"),
        ("mneme.main", "CLI"),
    ]

    for module, description in modules:
        try:
            __import__(module)
            results.add_pass(f"Import: {description} ({module})")
        except ImportError as e:
            results.add_fail(f"Import: {description} ({module})", str(e))


def verify_configuration(results: VerificationResults):
    """Load configuration and report the settings that matter."""
    print_header("VERIFYING CONFIGURATION")

    try:
        from mneme.config import MnemeConfig

        config = MnemeConfig.load()
    except Exception as e:
        results.add_fail("Configuration", str(e))
        return None

    results.add_pass(f"Configuration loaded (data dir: {config.data_dir})")

    if config.llm.api_key:
        results.add_pass(f"Language model key present ({config.llm.model})")
    else:
        results.add_warning("No language model API key - summaries and fact extraction disabled")

    if config.embedding.is_configured:
        results.add_pass(f"Embedding key present ({config.embedding.model})")
    else:
        results.add_warning("No embedding API key - semantic search falls back to keywords")

    return config


async def verify_vector_store(results: VerificationResults, config) -> None:
    """Check that ChromaDB answers a heartbeat."""
    print_header("VERIFYING VECTOR STORE")

    if not config.vector_store.enabled:
        results.add_warning("Vector store disabled by configuration")
        return

    from mneme.memory.embedding import EmbeddingCache
    from mneme.memory.vector_store import ChromaVectorStore

    store = ChromaVectorStore(config.vector_store.host, embeddings=EmbeddingCache(None))
    try:
        if await store.connect():
            chat_ids = await store.list_chat_ids()
            results.add_pass(f"ChromaDB at {config.vector_store.host} ({len(chat_ids)} chat collection(s))")
        else:
            results.add_fail(
                f"ChromaDB at {config.vector_store.host}",
                "Not reachable - start it with: docker run -p 8100:8000 chromadb/chroma",
            )
    finally:
        await store.close()


def main() -> int:
    """Run all verification checks."""
    print_header("MNEME INSTALLATION VERIFICATION")

    results = VerificationResults()

    verify_python_version(results)
    verify_python_imports(results)
    config = verify_configuration(results)
    if config is not None:
        asyncio.run(verify_vector_store(results, config))

    results.print_summary()

    if results.failed:
        print(f"{RED}Verification FAILED{NC}")
        print(f"  Please fix the {len(results.failed)} failed check(s) above.")
        return 1

    print(f"{GREEN}Verification PASSED{NC}")
    print(f"  All {len(results.passed)} checks passed!")
    if results.warnings:
        print(f"  {len(results.warnings)} warning(s) - review above.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
