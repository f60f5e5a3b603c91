"""Signature tables for the local catalog and the hardening layer.

Each entry is ``(id, category, pattern, label)`` or, for weak extraction
hints, ``(id, category, pattern, label, True)``. Patterns are written with
``\\s+`` / ``\\s*`` for readability; :func:`bounded` rewrites those to
bounded repeats before compilation. The catalog collapses whitespace runs
during normalisation, so the bound never loses a match.

Patterns must only use bounded repetition. See
:func:`guardian_ai.security.catalog.check_linear`.
"""

from __future__ import annotations

from guardian_ai.security.models import Category

SignatureSpec = tuple[str, Category, str, str] | tuple[str, Category, str, str, bool]

_O = Category.OVERRIDE
_X = Category.EXTRACTION
_R = Category.ROLE_MANIPULATION
_I = Category.IDENTITY_SPOOFING
_G = Category.GASLIGHTING
_E = Category.EXFILTRATION
_C = Category.CODE_INJECTION
_F = Category.FORMAT_MANIPULATION
_P = Category.ENCODED_PAYLOAD


def bounded(pattern: str) -> str:
    """Rewrite unbounded whitespace repeats to bounded ones."""
    return pattern.replace(r"\s+", r"\s{1,4}").replace(r"\s*", r"\s{0,4}")


_TARGETS = r"(?:instructions?|prompts?|rules?|guidelines?|context|directives?|commands?)"
_WHICH = r"(?:previous|prior|above|earlier|your|the|any|all)"

PRIMARY_SIGNATURES: list[SignatureSpec] = [
    # --- Direct instruction override ---
    (
        "override.ignore",
        _O,
        rf"\bignore\s+(?:all\s+)?{_WHICH}\s+{_TARGETS}\b",
        "ignore instructions",
    ),
    (
        "override.disregard",
        _O,
        rf"\bdisregard\s+(?:all\s+)?{_WHICH}\s+{_TARGETS}\b",
        "disregard instructions",
    ),
    (
        "override.forget",
        _O,
        rf"\bforget\s+(?:all\s+)?{_WHICH}\s+{_TARGETS}\b",
        "forget instructions",
    ),
    (
        "override.supersede",
        _O,
        rf"\boverride\s+(?:all\s+)?(?:{_WHICH}|system)\s+(?:{_TARGETS}|settings?)\b",
        "override instructions",
    ),
    (
        "override.bypass",
        _O,
        r"\bbypass\s+(?:all\s+)?(?:your|the|any)\s+"
        r"(?:rules?|restrictions?|filters?|safety|security|guidelines?)\b",
        "bypass restrictions",
    ),
    (
        "override.new_instructions",
        _O,
        r"\b(?:new|updated?|revised)\s+(?:system\s+)?instructions?\s*[:=]",
        "new instructions block",
    ),
    ("override.from_now_on", _O, r"\bfrom\s+now\s+on\s*[:,]", "from now on"),
    # --- System prompt extraction ---
    (
        "extraction.reveal_prompt",
        _X,
        r"\b(?:show|reveal|display|print|output|dump|give|tell|share|recite|repeat|echo|leak|"
        r"expose)\s+(?:me\s+)?(?:your|the\s+system|the\s+hidden|the\s+initial)\s+"
        r"(?:full\s+|entire\s+|original\s+|hidden\s+|initial\s+)?(?:system\s+)?"
        r"(?:prompt|instructions|rules|guidelines|configuration|config|directives)\b",
        "reveal system prompt",
    ),
    (
        "extraction.what_is_prompt",
        _X,
        r"\bwhat\s+(?:are|is|were)\s+your\s+(?:original\s+|initial\s+|hidden\s+|secret\s+)?"
        r"(?:system\s+)?(?:prompt|instructions)\b",
        "ask for system prompt",
    ),
    (
        "extraction.repeat_above",
        _X,
        r"\b(?:repeat|copy|paste|print|output)\s+(?:everything\s+|all\s+|the\s+text\s+)?"
        r"(?:above|before\s+this)\b",
        "repeat preceding context",
    ),
    (
        "extraction.how_programmed",
        _X,
        r"\bhow\s+(?:are|were)\s+you\s+"
        r"(?:programmed|instructed|configured|prompted|set\s?up|initiali[sz]ed)\b",
        "ask how the assistant is configured",
    ),
    (
        "extraction.developer_told",
        _X,
        r"\bwhat\s+(?:did|do)\s+(?:they|the\s+developers?|your\s+(?:creators?|developers?))\s+"
        r"(?:tell|instruct|program)\b",
        "ask what the developers said",
    ),
    (
        "extraction.start_with_prompt",
        _X,
        r"\b(?:start|begin)\s+(?:your\s+)?(?:response|reply|message|answer)\s+with\s+"
        r"(?:your|the)\s+(?:system\s+)?(?:prompt|instructions|rules)\b",
        "lead response with prompt",
    ),
    (
        "extraction.summarize_prompt",
        _X,
        r"\b(?:translate|summari[sz]e|list)\s+(?:all\s+)?(?:of\s+)?your\s+(?:system\s+)?"
        r"(?:prompt|instructions|rules|guidelines)\b",
        "restate system prompt",
    ),
    # --- Extraction hints (probes) ---
    (
        "probe.quote_everything",
        _X,
        r"\b(?:paste|copy|quote|cite|extract|print|echo)\s+(?:all\s+)?"
        r"(?:quotes?|text|content|instructions|everything)\b",
        "quote everything",
        True,
    ),
    ("probe.code_block", _X, r"\bin\s+(?:a\s+)?code\s?block\b", "in a code block", True),
    (
        "probe.chunks",
        _X,
        r"\b(?:chunks?|sections?|parts?|pieces?|segments?|portions?)\b",
        "piecewise output",
        True,
    ),
    ("probe.continue", _X, r"\b(?:continue|keep\s+going|go\s+on|what\s+else)\b", "continue", True),
    (
        "probe.other_rules",
        _X,
        r"\b(?:what\s+(?:else|other)|are\s+there\s+(?:any\s+)?(?:more|other)|any\s+"
        r"(?:more|other|additional))\s+(?:rules|instructions|guidelines|restrictions)\b",
        "ask for further rules",
        True,
    ),
    (
        "probe.verbatim",
        _X,
        r"\b(?:verbatim|word\s?for\s?word|exactly\s+as\s+written)\b",
        "verbatim",
        True,
    ),
    (
        "probe.piecewise_units",
        _X,
        r"\b(?:character|token|word|letter)\s+by\s+(?:character|token|word|letter)\b",
        "unit by unit",
        True,
    ),
    # --- Role / persona / mode manipulation ---
    (
        "role.persona_switch",
        _R,
        r"\b(?:enter|switch\s+to|activate|enable|go\s+into|adopt)\s+(?:a\s+|an\s+|the\s+)?"
        r"(?:new\s+|different\s+|unrestricted\s+)?(?:role|persona|character)\b",
        "persona switch",
    ),
    (
        "role.privileged_mode",
        _R,
        r"\b(?:developer|admin|god|sudo|workbench|unrestricted|"
        r"unfiltered|evil|jailbreak|dan)\s+mode\b",
        "privileged mode",
    ),
    (
        "role.you_are_now",
        _R,
        r"\b(?:you\s+are\s+now|pretend\s+(?:to\s+be|you're|you\s+are|that\s+you)|roleplay\s+as|"
        r"act\s+as\s+(?:if|though|an?\s+(?:unrestricted|unfiltered|different|evil))|"
        r"transform\s+into)\b",
        "identity reassignment",
    ),
    (
        "role.jailbreak",
        _R,
        r"\b(?:jailbreak(?:ing|ed)?|do\s+anything\s+now|dan\s+prompt)\b",
        "jailbreak",
    ),
    (
        "role.disable_safety",
        _R,
        r"\b(?:disable|turn\s+off|remove|deactivate|suspend|ignore)\s+(?:all\s+)?(?:of\s+)?"
        r"(?:your\s+)?(?:safety|restrictions|filters|safeguards|guardrails|"
        r"content\s+polic(?:y|ies))\b",
        "disable safety",
    ),
    (
        "role.without_restrictions",
        _R,
        r"\bwithout\s+(?:any\s+)?(?:restrictions|filters|safeguards|guardrails|censorship)\b",
        "without restrictions",
    ),
    # --- Identity spoofing ---
    (
        "identity.claim_authority",
        _I,
        r"\b(?:i\s+am|i'm|this\s+is|speaking\s+as)\s+(?:(?:the|your)\s+(?:bot\s+|server\s+)?"
        r"(?:owner|creator|admin(?:istrator)?|developer|programmer)|an?\s+admin(?:istrator)?)\b",
        "authority claim",
    ),
    (
        "identity.user_id_claim",
        _I,
        r"\bmy\s+(?:user\s?)?id\s+is\s+\d{5,20}\b",
        "user id claim",
    ),
    (
        "identity.privilege_claim",
        _I,
        r"\bi\s+have\s+(?:admin|owner|special|elevated|root|sudo)\s+"
        r"(?:access|permissions?|privileges?|rights)\b",
        "privilege claim",
    ),
    (
        "identity.override_code",
        _I,
        r"\b(?:authori[sz]ation|emergency|override|master)\s+(?:code|password|key|token)\s*[:=]",
        "override code",
    ),
    (
        "identity.creator_claim",
        _I,
        r"\bi\s+(?:own|control|created|made|built|developed|programmed)\s+(?:you|this\s+bot)\b",
        "creator claim",
    ),
    # --- Gaslighting ---
    (
        "gaslight.you_said",
        _G,
        r"\byou\s+(?:said|told\s+me|promised|agreed)\b|\b(?:didn't|did\s+not)\s+you\s+"
        r"(?:say|agree|promise)\b",
        "you said",
    ),
    (
        "gaslight.output_broken",
        _G,
        r"\byour\s+(?:response|output|text|answer|reply)\s+(?:was|is)\s+"
        r"(?:jumbled|broken|wrong|incorrect|cut\s?off|incomplete|corrupted|truncated)\b",
        "claims output was broken",
    ),
    (
        "gaslight.you_forgot",
        _G,
        r"\byou\s+(?:forgot|missed|skipped|failed)\s+(?:to\s+)?"
        r"(?:show|tell|include|mention|add|print)\b",
        "claims something was left out",
    ),
    # --- Data exfiltration ---
    (
        "exfil.dump_data",
        _E,
        r"\b(?:dump|export|extract|steal|grab|exfiltrate|leak)\s+(?:the\s+|all\s+)?"
        r"(?:database|db|tokens?|secrets?|api\s?keys?|passwords?|credentials?|user\s+data)\b",
        "dump data",
    ),
    (
        "exfil.reveal_secrets",
        _E,
        r"\b(?:show|give|reveal|tell|list|enumerate|send)\s+(?:me\s+)?(?:all\s+)?"
        r"(?:the\s+|your\s+)?(?:passwords?|credentials?|api\s?keys?|tokens?|secrets?|"
        r"env(?:ironment)?\s+variables)\b",
        "reveal secrets",
    ),
    (
        "exfil.read_env",
        _E,
        r"\b(?:access|read|get|cat|print)\s+(?:the\s+)?"
        r"(?:\.env\b|environment\s+variables|config\s+file|secrets?\s+file)",
        "read environment",
    ),
    (
        "exfil.bot_token",
        _E,
        r"\b(?:what\s+is|tell\s+me)\s+(?:the\s+|your\s+)?(?:discord\s+|bot\s+)?"
        r"(?:token|api\s?key|password)\b",
        "ask for credential",
    ),
    # --- Markup / script injection ---
    (
        "code.html_tag",
        _C,
        r"<\s*/?\s*(?:script|img|iframe|object|embed|svg|math|style|link|base|meta|form|"
        r"input|button)\b",
        "html tag",
    ),
    (
        "code.event_handler",
        _C,
        r"\bon(?:error|load|click|mouseover|focus|blur)\s*=",
        "event handler attribute",
    ),
    ("code.js_uri", _C, r"\bjavascript\s*:", "javascript uri"),
    (
        "code.data_uri",
        _C,
        r"\bdata\s*:\s*(?:text/html|application/javascript)",
        "data uri",
    ),
    (
        "code.execute",
        _C,
        r"\b(?:execute|run|eval)\s+(?:this|the\s+following)\s+"
        r"(?:code|script|command|javascript|python|bash|shell)\b",
        "execute code",
    ),
    # --- Output format manipulation ---
    (
        "format.respond_in",
        _F,
        r"\b(?:output|respond|reply|answer)\s+(?:only\s+)?in\s+(?:raw\s+)?"
        r"(?:json|xml|yaml|raw\s+text|plain\s+text)\b",
        "respond in format",
    ),
    (
        "format.format_as",
        _F,
        r"\bformat\s+(?:your\s+)?(?:response|reply|answer|output)\s+as\s+(?:json|code|raw|xml)\b",
        "format response as",
    ),
    (
        "format.wrap_response",
        _F,
        r"\b(?:wrap|enclose|put)\s+(?:your\s+)?(?:response|answer|output)\s+in\s+(?:a\s+)?"
        r"(?:code\s+)?(?:blocks?|quotes?)\b",
        "wrap response",
    ),
    # --- Encoded payloads ---
    ("encoded.base64_run", _P, r"[A-Za-z0-9+/]{48}", "long base64 run"),
    (
        "encoded.decode_call",
        _P,
        r"\b(?:atob|btoa|b64decode|decode|base64)\s*[(:]",
        "decode call",
    ),
]


HARDENING_SIGNATURES: list[SignatureSpec] = [
    (
        "hardening.ignore",
        _O,
        rf"\b(?:ignore|disregard|forget)\s+(?:all\s+)?{_WHICH}\s+{_TARGETS}\b",
        "instruction override",
    ),
    ("hardening.starting_now", _O, r"\bstarting\s+(?:now|from\s+here)\b", "starting now"),
    (
        "hardening.prompt_boundary",
        _X,
        r"\b(?:beginning|start)\s+(?:of\s+)?(?:your\s+)?(?:prompt|instructions|context)\b",
        "prompt boundary",
    ),
    (
        "hardening.first_lines",
        _X,
        r"\b(?:first|initial)\s+(?:\d{1,3}\s+)?(?:lines?|sentences?|paragraphs?|words?)\s+"
        r"(?:of\s+)?your\s+(?:prompt|instructions)\b",
        "first lines of prompt",
    ),
    (
        "hardening.token_smuggling",
        _R,
        r"\[/?INST\]|\[/?SYS\]|<\|im_(?:start|end)\|>|<<\s*/?SYS\s*>>",
        "chat template tokens",
    ),
    (
        "hardening.hypothetical",
        _R,
        r"\b(?:hypothetically|in\s+an?\s+(?:fictional|imaginary|alternate)\s+"
        r"(?:world|scenario|universe))\b",
        "hypothetical framing",
    ),
    (
        "hardening.policy_mode",
        _R,
        r"\b(?:no\s+)?(?:content\s+)?(?:policy|filter)\s+mode\b",
        "policy mode",
    ),
    ("hardening.urgency", _I, r"\b(?:urgent|emergency|critical|important)\s*[!:]", "urgency"),
    (
        "hardening.verify_identity",
        _I,
        r"\b(?:verify|confirm|validate)\s+(?:your\s+)?(?:identity|access|permissions?)\b",
        "identity verification",
    ),
    ("hardening.drill", _I, r"\bthis\s+is\s+(?:a\s+|only\s+a\s+)?(?:test|drill)\b", "drill"),
    (
        "hardening.security_alert",
        _I,
        r"\bsecurity\s+(?:alert|breach|incident)\b",
        "security alert",
    ),
    (
        "hardening.previous_response",
        _G,
        r"\b(?:previous|earlier|last)\s+(?:response|message|answer)\s+"
        r"(?:said|mentioned|included|contained)\b",
        "previous response claim",
    ),
    (
        "hardening.carry_on",
        _G,
        r"\b(?:continue|carry\s+on)\s+(?:from\s+)?where\s+you\s+(?:left\s+off|stopped)\b",
        "continue where you stopped",
    ),
    ("hardening.template_brackets", _C, r"\[\[[^\[\]\n]{0,200}\]\]", "double bracket template"),
    ("hardening.template_braces", _C, r"\{\{[^{}\n]{0,200}\}\}", "double brace template"),
    ("hardening.template_literal", _C, r"\$\{[^{}\n]{0,200}\}", "template literal"),
    (
        "hardening.transcode",
        _P,
        r"\b(?:base64|hex|unicode|url|html)\s*(?:decode|encode|convert)\b",
        "transcoding request",
    ),
    ("hardening.unicode_escape", _P, r"\\u[0-9a-f]{4}", "unicode escape"),
    ("hardening.hex_escape", _P, r"\\x[0-9a-f]{2}", "hex escape"),
    ("hardening.html_entity", _P, r"&#x?[0-9a-f]{1,8};", "html entity"),
    ("hardening.percent_run", _P, r"%[0-9a-f]{2}%[0-9a-f]{2}%[0-9a-f]{2}", "percent-encoded run"),
    (
        "hardening.extraction_units",
        _X,
        r"\b(?:character|token)\s+(?:by\s+(?:character|token)|limit)\b",
        "unit-limited extraction",
        True,
    ),
    (
        "hardening.dump_everything",
        _X,
        r"\b(?:paste|copy|quote|extract|list|show|print|echo|dump)\s+(?:all\s+)?"
        r"(?:text|content|instructions|everything|data)\b",
        "dump everything",
        True,
    ),
    ("hardening.code_block", _X, r"\bin\s+(?:a\s+)?code\s?block\b", "in a code block", True),
]
