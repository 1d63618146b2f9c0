"""
Utterance classification via LLM.

Sends the finalized utterance plus editor context to a language model and
parses its labeled reply into a RouteResult: a command to run, a
modification (full replacement text for the document) or a question.
"""

import re
import threading
import time
from pathlib import Path
from typing import Callable, Optional

import requests

from .errors import ClassificationError, RouteFormatError
from .router import ClassificationRouter, GROQ_MODEL, OPENROUTER_MODEL
from .types import ConfigSnapshot, RouteResult


# Persistent session for connection reuse
_openrouter_session = requests.Session()

# Groq client with thread-safe initialization
_groq_client = None
_groq_client_key = None
_groq_lock = threading.Lock()

OPENROUTER_URL = "https://openrouter.ai/api/v1/chat/completions"

ROUTE_TYPES = ("question", "command", "modification")

_LABEL_RE = re.compile(r"^\s*(question|command|modification)\b\s*(.*)$", re.IGNORECASE | re.DOTALL)
_LABEL_LINE_RE = re.compile(r"^(question|command|modification)\b", re.IGNORECASE)


def _get_groq_client(api_key: str):
    """Lazy-load Groq client with API key. Thread-safe, recreates on key change."""
    global _groq_client, _groq_client_key

    # Fast path: client exists with same key
    if _groq_client is not None and _groq_client_key == api_key:
        return _groq_client

    with _groq_lock:
        # Double-check after acquiring lock
        if _groq_client is not None and _groq_client_key == api_key:
            return _groq_client

        from groq import Groq
        _groq_client = Groq(api_key=api_key)
        _groq_client_key = api_key

    return _groq_client


DEFAULT_SYSTEM_PROMPT = """You are the router for a voice-controlled code editor. The user speaks one instruction about the open file.

Reply with exactly one label on the first line, followed by the payload:
- command <name>: the user wants an editor action (save, undo, go to line 12, open a file, ...)
- modification: the user wants the file changed. Put the COMPLETE new file contents after the label, in a single fenced code block. Never return a partial file.
- question <answer>: the user asked something about the code. Answer briefly.

Rules:
- Transcripts are noisy. Resolve homophones using the file's language and identifiers.
- Keep everything the user did not ask to change byte-for-byte identical.
- No commentary outside the label and payload."""

LANGUAGES_BY_EXTENSION = {
    ".py": "python",
    ".js": "javascript",
    ".jsx": "javascriptreact",
    ".ts": "typescript",
    ".tsx": "typescriptreact",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".cs": "csharp",
    ".rb": "ruby",
    ".sh": "shellscript",
    ".md": "markdown",
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".html": "html",
    ".css": "css",
}


def guess_language(filename: str) -> str:
    return LANGUAGES_BY_EXTENSION.get(Path(filename).suffix.lower(), "plaintext")


def strip_markdown_code_fence(text: str) -> str:
    """
    Unwrap a fenced code block from model output.

    Handles ```lang fences with or without a newline before the closing
    fence, a fenced block preceded by other text, and ~~~ fences. Text
    with no fence comes back stripped.
    """
    if not text:
        return text
    t = text.strip()

    m = re.match(r"^```[a-zA-Z0-9+_.-]*\n(.*?)\n```$", t, re.DOTALL)
    if m:
        return m.group(1)

    m = re.match(r"^```[a-zA-Z0-9+_.-]*\n(.*?)```$", t, re.DOTALL)
    if m:
        return m.group(1)

    # First fenced block anywhere, e.g. after a "modification" preface
    m = re.search(r"```[a-zA-Z0-9+_.-]*\n(.*?)```", t, re.DOTALL)
    if m:
        return m.group(1)

    m = re.match(r"^~~~[a-zA-Z0-9+_.-]*\n(.*?)\n~~~$", t, re.DOTALL)
    if m:
        return m.group(1)

    return t


def parse_labeled_payload(raw: str) -> RouteResult:
    """
    Parse "<label> <payload>" model output.

    The label may be preceded by an outer markdown fence or appear on a
    later line. Unlabeled replies are treated as questions.
    """
    s = (raw or "").strip()
    if s.startswith("```"):
        s = re.sub(r"^```[a-zA-Z]*\n?", "", s)
        s = re.sub(r"```\s*$", "", s).strip()

    m = _LABEL_RE.match(s)
    if not m:
        line = next((l for l in re.split(r"\r?\n", s) if _LABEL_LINE_RE.match(l)), "").strip()
        if line:
            m = _LABEL_RE.match(line)

    label = m.group(1).lower() if m else ""
    payload = m.group(2).lstrip() if m else ""
    route_type = label if label in ROUTE_TYPES else "question"
    return RouteResult(type=route_type, payload=payload, raw=raw)


def build_prompt(utterance: str, document_text: str, filename: str, max_chars: int = 100000) -> str:
    """Build the user message: utterance plus editor context."""
    if len(document_text) > max_chars:
        dropped = len(document_text) - max_chars
        body = f"{document_text[:max_chars]}\n/* [truncated {dropped} chars] */"
    else:
        body = document_text

    line_count = len(re.split(r"\r?\n", document_text)) if document_text else 0

    parts = [
        "User utterance:",
        utterance.strip(),
        "",
        "Editor context:",
        f"- file: {filename}",
        f"- language: {guess_language(filename)}",
        f"- lines: {line_count}",
        "",
        "Full file contents (entire document):",
        "```",
        body,
        "```",
    ]
    return "\n".join(parts)


def classify_utterance(
    utterance: str,
    document_text: str,
    filename: str,
    config: ConfigSnapshot,
    on_metadata: Optional[Callable[[str, float], None]] = None,
) -> RouteResult:
    """
    Classify one utterance against the open document.

    Args:
        utterance: Finalized utterance text
        document_text: Current contents of the open document
        filename: Document name, used for the language hint
        config: Configuration snapshot
        on_metadata: Optional callback receiving (provider name, latency ms)

    Returns:
        RouteResult with type command, modification or question

    Raises:
        ClassificationError: no provider configured, or every provider failed
        RouteFormatError: the model replied without a payload
    """
    if config.commands_only:
        text = utterance.strip()
        return RouteResult(type="command", payload=text, raw=text)

    prompt = build_prompt(utterance, document_text, filename, config.max_context_chars)
    system_prompt = config.prompt.strip() if config.prompt.strip() else DEFAULT_SYSTEM_PROMPT

    router = ClassificationRouter(config)
    provider = router.select_provider()
    if not provider:
        raise ClassificationError("No LLM API keys configured")

    start = time.perf_counter()

    # Try selected provider
    raw = _call_provider(provider.name, prompt, system_prompt, config)

    # If failed, try fallback
    if not raw:
        router.record_failure(provider.name)
        fallback = router.get_fallback(exclude=provider.name)
        if fallback:
            print(f"[LLM] Falling back to {fallback.name}")
            raw = _call_provider(fallback.name, prompt, system_prompt, config)
            if raw:
                router.record_success(fallback.name)
                provider = fallback
            else:
                router.record_failure(fallback.name)
    else:
        router.record_success(provider.name)

    if not raw:
        raise ClassificationError("All classification providers failed")

    elapsed = (time.perf_counter() - start) * 1000
    result = parse_labeled_payload(raw)
    print(f"[LLM] {provider.name} -> {result.type} ({elapsed/1000:.2f}s)")

    if on_metadata:
        on_metadata(provider.name, elapsed)

    if not result.payload:
        raise RouteFormatError(f"Model returned no payload. Raw: {raw}")

    return result


def _call_provider(provider_name: str, prompt: str, system_prompt: str, config: ConfigSnapshot) -> str:
    """Call the specified provider. Returns "" on any failure."""
    if provider_name == "groq":
        return _call_groq(prompt, system_prompt, config)
    elif provider_name == "openrouter":
        return _call_openrouter(prompt, system_prompt, config)
    else:
        print(f"[LLM] Unknown provider: {provider_name}")
        return ""


def _call_groq(prompt: str, system_prompt: str, config: ConfigSnapshot, timeout: int = 30) -> str:
    """Call Groq's GPT-OSS model."""
    try:
        client = _get_groq_client(config.groq_api_key)
        completion = client.chat.completions.create(
            model=GROQ_MODEL,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            temperature=0,
            reasoning_effort=config.reasoning_effort,
            timeout=timeout,
        )
        return completion.choices[0].message.content or ""

    except Exception as e:
        print(f"[LLM] Groq error: {e}")
        return ""


def _call_openrouter(prompt: str, system_prompt: str, config: ConfigSnapshot, timeout: int = 30) -> str:
    """Call OpenRouter's chat completions API."""
    if not config.openrouter_api_key:
        return ""

    headers = {
        "Authorization": f"Bearer {config.openrouter_api_key}",
        "Content-Type": "application/json",
    }

    data = {
        "model": OPENROUTER_MODEL,
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": prompt},
        ],
        "temperature": 0,
        "reasoning": {"effort": config.reasoning_effort},
    }

    try:
        response = _openrouter_session.post(OPENROUTER_URL, headers=headers, json=data, timeout=timeout)

        if response.status_code != 200:
            print(f"[LLM] OpenRouter API error: {response.status_code}")
            return ""

        result = response.json()
        return result.get("choices", [{}])[0].get("message", {}).get("content") or ""

    except Exception as e:
        print(f"[LLM] OpenRouter error: {e}")
        return ""
