import math

UNKNOWN = "unknown"


def normalize_provider(provider: "str | None") -> "str":
    """
    lowercases and trims the provider name, falling back to "unknown".
    """
    p = (provider or "").strip().lower()
    if not p:
        return UNKNOWN
    return p


def normalize_model(provider: "str | None", model: "str | None") -> "str":
    """
    trims the model name and strips a redundant "<provider>/" prefix,
    e.g. ("OpenAI", "openai/gpt-4o") -> "gpt-4o". The model's own
    casing is kept.
    """
    m = (model or "").strip()
    if not m:
        return UNKNOWN

    prefix = normalize_provider(provider) + "/"
    if m.lower().startswith(prefix):
        m = m[len(prefix) :]

    # a bare "openai/" would otherwise produce an empty key part
    return m or UNKNOWN


def model_key(provider: "str | None", model: "str | None") -> "str":
    p = normalize_provider(provider)
    return f"{p}/{normalize_model(p, model)}"


def round_half_away(value: "float", digits: "int") -> "float":
    """
    rounds half away from zero, unlike the builtin round() which
    rounds half to even.
    """
    scale = 10**digits
    return math.copysign(math.floor(abs(value) * scale + 0.5), value) / scale
