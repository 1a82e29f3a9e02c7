"""
listingsite/branding.py

Brand color derivation and scoped application of presentation tokens.

A tenant's primary/secondary hex colors become HSL tokens plus a readable
foreground (black or white, chosen by WCAG relative luminance). Tokens are
written to a StyleScope through a BrandingHandle that records what it
replaced, so `revert` leaves the scope exactly as it found it.

Only one handle may be active per scope: applying a new tenant's branding
reverts the previous one first, so colors never bleed across tenants.
"""

from __future__ import annotations

import math
import re
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from listingsite.config import (
    DEFAULT_FAVICON,
    DEFAULT_PRIMARY_COLOR,
    DEFAULT_SECONDARY_COLOR,
    IS_DEV,
    TRUSTED_ADMIN_ORIGIN,
)


BLACK_FOREGROUND = "0 0% 0%"
WHITE_FOREGROUND = "0 0% 100%"
LUMINANCE_THRESHOLD = 0.5

PREVIEW_MESSAGE_TYPE = "BRANDING_PREVIEW"
HEX_DIGITS = re.compile(r"[0-9a-fA-F]{3}|[0-9a-fA-F]{6}")

# Every token apply_branding writes; revert removes exactly these
BRANDING_TOKENS = (
    "--org-primary",
    "--org-primary-foreground",
    "--org-secondary",
    "--org-secondary-foreground",
    "--primary",
    "--primary-foreground",
)


class InvalidColorError(ValueError):
    """Raised when a string is not a #rgb or #rrggbb hex color."""


# ============================================================================
# Color math
# ============================================================================

def _js_round(x: float) -> int:
    # half-up, matching how the tokens have always been rounded
    return int(math.floor(x + 0.5))


def parse_hex(value: str) -> Tuple[float, float, float]:
    """
    Parse a hex color into channels normalized to [0, 1].

    Accepts `#rgb` and `#rrggbb`, with or without the leading `#`.

    Raises:
        InvalidColorError: For anything else
    """
    if not isinstance(value, str):
        raise InvalidColorError(f"Not a hex color: {value!r}")
    digits = value.strip()
    if digits.startswith("#"):
        digits = digits[1:]
    if not HEX_DIGITS.fullmatch(digits):
        raise InvalidColorError(f"Not a hex color: {value!r}")
    if len(digits) == 3:
        digits = "".join(ch * 2 for ch in digits)
    r, g, b = (int(digits[i:i + 2], 16) for i in (0, 2, 4))
    return r / 255, g / 255, b / 255


def hex_to_hsl(value: str) -> Tuple[int, int, int]:
    """Convert hex to integer-rounded (hue degrees, saturation %, lightness %)."""
    r, g, b = parse_hex(value)
    high, low = max(r, g, b), min(r, g, b)
    lightness = (high + low) / 2

    if high == low:
        hue = saturation = 0.0
    else:
        d = high - low
        saturation = d / (2 - high - low) if lightness > 0.5 else d / (high + low)
        if high == r:
            hue = (g - b) / d + (6 if g < b else 0)
        elif high == g:
            hue = (b - r) / d + 2
        else:
            hue = (r - g) / d + 4
        hue /= 6

    return _js_round(hue * 360), _js_round(saturation * 100), _js_round(lightness * 100)


def hsl_token(value: str) -> str:
    """Format a hex color as the space-separated "H S% L%" token."""
    h, s, l = hex_to_hsl(value)
    return f"{h} {s}% {l}%"


def _linearize(channel: float) -> float:
    if channel <= 0.03928:
        return channel / 12.92
    return ((channel + 0.055) / 1.055) ** 2.4


def relative_luminance(value: str) -> float:
    r, g, b = (_linearize(c) for c in parse_hex(value))
    return 0.2126 * r + 0.7152 * g + 0.0722 * b


def foreground_token(value: str) -> str:
    """Black on light backgrounds (luminance strictly above 0.5), else white."""
    return BLACK_FOREGROUND if relative_luminance(value) > LUMINANCE_THRESHOLD else WHITE_FOREGROUND


# ============================================================================
# Derived tokens
# ============================================================================

@dataclass(frozen=True)
class BrandingTokens:
    primary_hex: str
    secondary_hex: str
    primary: str
    primary_foreground: str
    secondary: str
    secondary_foreground: str

    def as_properties(self) -> Dict[str, str]:
        return {
            "--org-primary": self.primary,
            "--org-primary-foreground": self.primary_foreground,
            "--org-secondary": self.secondary,
            "--org-secondary-foreground": self.secondary_foreground,
            "--primary": self.primary,
            "--primary-foreground": self.primary_foreground,
        }


def _usable(value: Optional[str], default: str) -> str:
    if not value:
        return default
    try:
        parse_hex(value)
    except InvalidColorError:
        print(f"[BRANDING] Invalid color {value!r}, using default {default}")
        return default
    return value


def derive_tokens(primary: Optional[str] = None, secondary: Optional[str] = None) -> BrandingTokens:
    """Derive tokens for a color pair; absent or invalid colors use the defaults."""
    primary = _usable(primary, DEFAULT_PRIMARY_COLOR)
    secondary = _usable(secondary, DEFAULT_SECONDARY_COLOR)
    return BrandingTokens(
        primary_hex=primary,
        secondary_hex=secondary,
        primary=hsl_token(primary),
        primary_foreground=foreground_token(primary),
        secondary=hsl_token(secondary),
        secondary_foreground=foreground_token(secondary),
    )


# ============================================================================
# Style scope and handles
# ============================================================================

class StyleScope:
    """
    A shared set of CSS custom properties (the document-level style scope).

    At most one BrandingHandle is active on a scope at a time.
    """

    def __init__(self, initial: Optional[Mapping[str, str]] = None):
        self._properties: Dict[str, str] = dict(initial or {})
        self._active: Optional["BrandingHandle"] = None
        self._lock = threading.RLock()

    def set_property(self, name: str, value: str) -> None:
        with self._lock:
            self._properties[name] = value

    def remove_property(self, name: str) -> None:
        with self._lock:
            self._properties.pop(name, None)

    def get_property(self, name: str) -> Optional[str]:
        with self._lock:
            return self._properties.get(name)

    def properties(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._properties)

    @property
    def active_handle(self) -> Optional["BrandingHandle"]:
        return self._active

    def to_css(self, selector: str = ":root") -> str:
        body = "".join(f"  {k}: {v};\n" for k, v in sorted(self.properties().items()))
        return f"{selector} {{\n{body}}}\n"


@dataclass
class BrandingHandle:
    """
    Receipt for one application of branding tokens.

    Holds the values the scope had before the write. `revert` is idempotent
    and is also run on context-manager exit, so every exit path cleans up.
    """
    scope: StyleScope
    tokens: BrandingTokens
    previous: Dict[str, Optional[str]] = field(default_factory=dict)
    reverted: bool = False

    def revert(self) -> None:
        with self.scope._lock:
            if self.reverted:
                return
            for name, old in self.previous.items():
                if old is None:
                    self.scope.remove_property(name)
                else:
                    self.scope.set_property(name, old)
            self.reverted = True
            if self.scope._active is self:
                self.scope._active = None

    def __enter__(self) -> "BrandingHandle":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.revert()


def apply_branding(
    primary: Optional[str],
    secondary: Optional[str],
    scope: StyleScope,
) -> BrandingHandle:
    """
    Write a tenant's branding tokens to `scope`.

    Any handle already active on the scope is reverted first. The caller
    owns the returned handle and must revert it on teardown.
    """
    tokens = derive_tokens(primary, secondary)
    with scope._lock:
        if scope._active is not None:
            scope._active.revert()
        handle = BrandingHandle(scope=scope, tokens=tokens)
        for name, value in tokens.as_properties().items():
            handle.previous[name] = scope.get_property(name)
            scope.set_property(name, value)
        scope._active = handle
    return handle


def revert(handle: Optional[BrandingHandle]) -> None:
    if handle is not None:
        handle.revert()


# ============================================================================
# Live preview channel
# ============================================================================

class BrandingSession:
    """
    Branding for one mounted view, including the live-preview channel.

    Preview messages re-derive tokens immediately, but only when the sender's
    origin is this view's own origin or the trusted admin origin. Anything
    else is dropped without touching the scope.
    """

    def __init__(
        self,
        scope: StyleScope,
        origin: str,
        primary: Optional[str] = None,
        secondary: Optional[str] = None,
        trusted_origins: Optional[Iterable[str]] = None,
    ):
        self.scope = scope
        self.origin = origin.rstrip("/")
        extra = trusted_origins if trusted_origins is not None else [TRUSTED_ADMIN_ORIGIN]
        self.allowed_origins = frozenset([self.origin, *(o.rstrip("/") for o in extra)])
        self.primary = primary
        self.secondary = secondary
        self.handle: Optional[BrandingHandle] = None

    def start(self) -> BrandingHandle:
        self.handle = apply_branding(self.primary, self.secondary, self.scope)
        return self.handle

    def handle_message(self, origin: Optional[str], data: Any) -> bool:
        """
        Process one inbound cross-context message.

        Returns:
            True if the message was accepted and the tokens re-applied
        """
        if (origin or "").rstrip("/") not in self.allowed_origins:
            if IS_DEV:
                print(f"[BRANDING] Ignored message from untrusted origin: {origin}")
            return False
        if not isinstance(data, Mapping) or data.get("type") != PREVIEW_MESSAGE_TYPE:
            return False
        colors = data.get("colors")
        if not isinstance(colors, Mapping):
            return False

        self.primary = colors.get("primary") or self.primary
        self.secondary = colors.get("secondary") or self.secondary
        self.start()
        return True

    def close(self) -> None:
        revert(self.handle)
        self.handle = None

    def __enter__(self) -> "BrandingSession":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


# ============================================================================
# Favicon
# ============================================================================

def resolve_favicon_url(organization: Any, path: str = "/") -> str:
    """Tenant favicon, then logo, then the product default; admin pages keep the default."""
    if path.startswith("/admin") or organization is None:
        return DEFAULT_FAVICON
    return (
        getattr(organization, "favicon_url", None)
        or getattr(organization, "logo_url", None)
        or DEFAULT_FAVICON
    )


def favicon_href(url: str, timestamp_ms: int) -> str:
    """Append a cache buster so browsers pick up a changed icon."""
    if "?" in url:
        return f"{url}&_cb={timestamp_ms}"
    return f"{url}?v={timestamp_ms}"
