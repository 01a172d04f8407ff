#!/usr/bin/env python
"""Validate setup - check dependencies, configuration and the AI provider."""
import sys
import asyncio
from pathlib import Path

# Color codes for terminal output
GREEN = "\033[92m"
RED = "\033[91m"
YELLOW = "\033[93m"
BLUE = "\033[94m"
RESET = "\033[0m"

def print_success(msg):
    print(f"{GREEN}OK{RESET} {msg}")

def print_error(msg):
    print(f"{RED}FAIL{RESET} {msg}")

def print_info(msg):
    print(f"{BLUE}--{RESET} {msg}")

def print_warning(msg):
    print(f"{YELLOW}WARN{RESET} {msg}")

def print_section(title):
    print(f"\n{BLUE}{'='*60}{RESET}")
    print(f"{BLUE}{title:^60}{RESET}")
    print(f"{BLUE}{'='*60}{RESET}\n")

async def main():
    print_section("docchat - Setup Validation")

    errors = []
    warnings = []

    # 1. Python version check
    print_section("1. Python Environment")
    python_version = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
    print_info(f"Python version: {python_version}")
    if sys.version_info >= (3, 10):
        print_success("Python version >= 3.10")
    else:
        print_error("Python version < 3.10 (required)")
        errors.append("Python version too old")

    in_venv = hasattr(sys, 'base_prefix') and sys.base_prefix != sys.prefix
    if in_venv:
        print_success("Running in virtual environment")
    else:
        print_warning("Not running in virtual environment (recommended)")
        warnings.append("Not in venv")

    # 2. Import core dependencies
    print_section("2. Core Dependencies")

    dependencies = [
        ("quart", "Quart web framework"),
        ("hypercorn", "Hypercorn ASGI server"),
        ("httpx", "HTTP client"),
        ("faiss", "FAISS similarity search"),
        ("numpy", "Vector math"),
        ("pydantic", "Data validation"),
        ("aiosqlite", "Async SQLite"),
        ("pypdf", "PDF extraction"),
        ("structlog", "Structured logging"),
        ("pytest", "Testing framework"),
    ]

    for module_name, description in dependencies:
        try:
            __import__(module_name)
            print_success(f"{description:30} ({module_name})")
        except ImportError as e:
            print_error(f"{description:30} ({module_name}) - {e}")
            errors.append(f"Missing: {module_name}")

    # 3. Test configuration
    print_section("3. Configuration")

    try:
        sys.path.insert(0, str(Path(__file__).parent.parent))
        from docchat import config

        print_success("Config loaded successfully")
        print_info(f"  Provider: {config.LLM_PROVIDER}")
        print_info(f"  Chat model: {config.CHAT_MODEL}")
        print_info(f"  Embedding model: {config.EMBEDDING_MODEL} ({config.EMBEDDING_DIMENSION} dims)")
        print_info(f"  Chunk size: {config.CHUNK_SIZE} chars")
        print_info(f"  Database: {config.DB_PATH}")

        if config.DATA_DIR.exists():
            print_success(f"Data directory exists: {config.DATA_DIR}")
        else:
            print_error(f"Data directory missing: {config.DATA_DIR}")
            errors.append("Data directory missing")

        if config.LLM_PROVIDER == "gemini" and not config.GEMINI_API_KEY:
            print_error("GEMINI_API_KEY is not set")
            errors.append("Missing Gemini API key")

    except Exception as e:
        print_error(f"Failed to load config: {e}")
        errors.append("Config loading failed")
        return errors, warnings

    # 4. Provider connection and models
    print_section("4. AI Provider")

    from docchat.llm_client import TaskType, get_provider
    provider = get_provider()

    try:
        models = await provider.list_models()
        print_success(f"{provider.name} reachable, {len(models)} models available")

        for model in (config.CHAT_MODEL, config.EMBEDDING_MODEL):
            if model in models:
                print_success(f"Model available: {model}")
            else:
                print_error(f"Model missing: {model}")
                if provider.name == "ollama":
                    print_info(f"  Run: ollama pull {model}")
                errors.append(f"Missing model: {model}")

    except Exception as e:
        print_error(f"Cannot reach {provider.name}: {e}")
        errors.append(f"Provider unreachable: {e}")

    # 5. Embedding round trip
    print_section("5. Embedding API Test")

    try:
        items = await provider.embed(["test"], TaskType.RETRIEVAL_QUERY)
        dimension = len(items[0]["embedding"])
        if dimension == config.EMBEDDING_DIMENSION:
            print_success(f"Embedding API working (dimension: {dimension})")
        else:
            print_error(
                f"Embedding dimension {dimension} != EMBEDDING_DIMENSION "
                f"{config.EMBEDDING_DIMENSION}"
            )
            errors.append("Embedding dimension mismatch")
    except Exception as e:
        print_error(f"Embedding API test failed: {e}")
        errors.append(f"API test failed: {e}")

    # 6. Summary
    print_section("Summary")

    if not errors:
        print_success("All checks passed!")
    else:
        print_error(f"Found {len(errors)} error(s):")
        for i, error in enumerate(errors, 1):
            print(f"  {i}. {error}")

    if warnings:
        print_warning(f"\nFound {len(warnings)} warning(s):")
        for i, warning in enumerate(warnings, 1):
            print(f"  {i}. {warning}")

    print()
    return errors, warnings

if __name__ == "__main__":
    errors, warnings = asyncio.run(main())
    sys.exit(1 if errors else 0)
