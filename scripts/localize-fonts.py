#!/usr/bin/env python3
"""
Download the fonts referenced by a stylesheet's @font-face rules and emit a
SASS fragment that points at the local copies.

The stylesheet may be a remote URL or a local file. Font files land in
<base-dir>/<stylesheet basename>/, which is wiped at the start of every run.
The generated fragment uses $font-path / $font-folder placeholders so it can
be dropped into any project regardless of where the fonts end up.

Usage:
    python scripts/localize-fonts.py https://fonts.googleapis.com/css2?family=Roboto
    python scripts/localize-fonts.py ./theme/fonts.css --output ./scss/_fonts.scss

Requirements:
    pip install requests httpx cssutils
"""

import argparse
import asyncio
import dataclasses
import json
import re
import shutil
import sys
import xml.dom
from dataclasses import dataclass, field
from functools import reduce
from pathlib import Path
from urllib.parse import urljoin, urlparse

try:
    import requests
except ImportError:
    print("Error: requests is required. Install with: pip install requests")
    sys.exit(1)

try:
    import httpx
except ImportError:
    print("Error: httpx is required. Install with: pip install httpx")
    sys.exit(1)

try:
    import cssutils
    import logging
    cssutils.log.setLevel(logging.CRITICAL)
except ImportError:
    print("Error: cssutils is required. Install with: pip install cssutils")
    sys.exit(1)


USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)

URL_TOKEN_RE = re.compile(r"""url\(\s*['"]?(.+?)['"]?\s*\)""")
UNSAFE_FILENAME_RE = re.compile(r'[/?<>\\:*|"]')
CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x80-\x9f]")
RESERVED_NAME_RE = re.compile(r"^\.+$")
WINDOWS_RESERVED_RE = re.compile(r"^(con|prn|aux|nul|com[0-9]|lpt[0-9])(\..*)?$", re.I)
TRAILING_DOTS_RE = re.compile(r"[. ]+$")
CSS_COMMENT_OR_STRING_RE = re.compile(
    r"""/\*.*?\*/|"(?:\\.|[^"\\])*"|'(?:\\.|[^'\\])*'|url\([^)]*\)""", re.S
)
MAX_FILENAME_BYTES = 255


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class FontLocalizerError(Exception):
    """Base class for everything this script raises on purpose."""


class ConfigError(FontLocalizerError):
    """The JSON config file is unreadable or has unexpected contents."""


class LoadError(FontLocalizerError):
    """The stylesheet could not be obtained."""

    action = "Could not load"

    def __init__(self, identifier, cause):
        self.identifier = identifier
        self.cause = cause
        super().__init__(f"{self.action} {identifier}: {cause}")


class FetchError(LoadError):
    action = "Could not fetch"


class ReadError(LoadError):
    action = "Could not read"


class ParseError(FontLocalizerError):
    """The stylesheet is not valid CSS."""


class ResourceFetchError(FontLocalizerError):
    """A single font file could not be downloaded."""

    def __init__(self, url, cause):
        self.url = url
        self.cause = cause
        super().__init__(f"Could not download {url}: {cause}")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@dataclass
class FontConfig:
    base_directory: str = "./data/fonts"
    font_path_variable: str = "$font-path"
    font_folder_variable: str = "$font-folder"
    font_path_value: str = "../fonts/"
    timeout: float = 30.0


def load_config(config_path) -> FontConfig:
    """Load FontConfig overrides from a JSON file.

    Expected format (every key optional):
    {
        "base_directory": "./data/fonts",
        "font_path_variable": "$font-path",
        "font_folder_variable": "$font-folder",
        "font_path_value": "../fonts/",
        "timeout": 30
    }
    """
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Could not load config {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config {config_path} must contain a JSON object")

    known = {f.name for f in dataclasses.fields(FontConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown config key(s) in {config_path}: {', '.join(unknown)}")

    for f in dataclasses.fields(FontConfig):
        if f.name not in data:
            continue
        value = data[f.name]
        expected = (int, float) if f.type is float else f.type
        if isinstance(value, bool) or not isinstance(value, expected):
            raise ConfigError(
                f"Config key {f.name!r} in {config_path} must be {f.type.__name__}, got {value!r}"
            )

    return FontConfig(**data)


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RunContext:
    destination_directory: Path
    folder_name: str
    origin: str = ""


@dataclass(frozen=True)
class CssRule:
    kind: str
    declarations: tuple = ()

    def get(self, prop, default=None):
        """Return the last value declared for prop."""
        value = default
        for name, declared in self.declarations:
            if name == prop:
                value = declared
        return value


@dataclass(frozen=True)
class SourceEntry:
    local_file_name: str
    extension: str
    local_path: Path
    resolved_url: str


@dataclass(frozen=True)
class FontDescriptor:
    family: str
    style: str = ""
    weight: str = ""
    sources: dict = field(default_factory=dict)


@dataclass
class DownloadResult:
    entry: SourceEntry
    success: bool
    error: str | None = None


@dataclass
class RunResult:
    context: RunContext
    catalog: dict
    downloads: list
    fragment: str

    @property
    def failed(self) -> list:
        return [d for d in self.downloads if not d.success]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def print_step(msg: str):
    """Print a progress step."""
    print(f"  -> {msg}")


def is_remote(identifier: str) -> bool:
    return urlparse(identifier).scheme in ("http", "https")


# ---------------------------------------------------------------------------
# Source loader
# ---------------------------------------------------------------------------

def folder_name_for(identifier: str) -> str:
    """Derive the per-stylesheet folder name from the identifier's basename."""
    if is_remote(identifier):
        segment = urlparse(identifier).path.rstrip("/").split("/")[-1]
    else:
        segment = Path(identifier).name
    name = sanitize_filename(segment.split(".")[0])
    return name or "stylesheet"


def prepare_destination(identifier: str, config: FontConfig) -> RunContext:
    """Recreate an empty destination directory for this stylesheet."""
    folder_name = folder_name_for(identifier)
    destination = (Path(config.base_directory) / folder_name).resolve()

    if destination.exists():
        shutil.rmtree(destination)
    destination.mkdir(parents=True)

    return RunContext(destination_directory=destination, folder_name=folder_name)


def load_stylesheet(identifier: str, timeout=30):
    """Return (css_text, origin) for a URL or local path."""
    if is_remote(identifier):
        try:
            resp = requests.get(identifier, timeout=timeout, headers={"User-Agent": USER_AGENT})
            resp.raise_for_status()
        except requests.RequestException as e:
            raise FetchError(identifier, e) from e
        parsed = urlparse(identifier)
        return resp.text, f"{parsed.scheme}://{parsed.netloc}"

    try:
        return Path(identifier).read_text(encoding="utf-8"), ""
    except (OSError, UnicodeDecodeError) as e:
        raise ReadError(identifier, e) from e


# ---------------------------------------------------------------------------
# Stylesheet parser
# ---------------------------------------------------------------------------

def rule_kind(rule) -> str:
    """Map a cssutils rule to a short kind tag, e.g. FONT_FACE_RULE -> font-face."""
    type_string = rule.typeString.lower()
    if type_string.endswith("_rule"):
        type_string = type_string[: -len("_rule")]
    return type_string.replace("_", "-")


def check_balanced_blocks(css_text: str):
    """Raise ParseError for a missing or stray brace.

    cssutils silently closes blocks left open at the end of the input, so an
    unterminated rule has to be caught separately.
    """
    stripped = CSS_COMMENT_OR_STRING_RE.sub(lambda m: "\n" * m.group(0).count("\n"), css_text)
    depth = 0
    for line_no, line in enumerate(stripped.splitlines(), 1):
        for char in line:
            if char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth < 0:
                    raise ParseError(f"Invalid CSS: unexpected '}}' on line {line_no}")
    if depth:
        raise ParseError(f"Invalid CSS: {depth} unclosed block(s) at end of stylesheet")


def parse_stylesheet(css_text: str) -> list[CssRule]:
    """Parse CSS text into a flat list of top-level rules."""
    parser = cssutils.CSSParser(raiseExceptions=True, validate=False)
    try:
        sheet = parser.parseString(css_text)
    except xml.dom.DOMException as e:
        raise ParseError(f"Invalid CSS: {e}") from e
    check_balanced_blocks(css_text)

    rules = []
    for rule in sheet:
        style = getattr(rule, "style", None)
        declarations = ()
        if style is not None:
            declarations = tuple((prop.name, prop.value) for prop in style)
        rules.append(CssRule(kind=rule_kind(rule), declarations=declarations))
    return rules


# ---------------------------------------------------------------------------
# Resolver & naming
# ---------------------------------------------------------------------------

def sanitize_filename(name: str) -> str:
    """Make name safe to use as a file name on any common filesystem.

    Unsafe and control characters are dropped, whitespace runs become a single
    dash. Applying it twice gives the same result as applying it once.
    """
    name = UNSAFE_FILENAME_RE.sub("", name)
    name = re.sub(r"\s+", "-", name)
    name = CONTROL_CHARS_RE.sub("", name)
    name = TRAILING_DOTS_RE.sub("", name)
    if RESERVED_NAME_RE.match(name) or WINDOWS_RESERVED_RE.match(name):
        return ""
    encoded = name.encode("utf-8")
    if len(encoded) > MAX_FILENAME_BYTES:
        name = encoded[:MAX_FILENAME_BYTES].decode("utf-8", errors="ignore")
        name = TRAILING_DOTS_RE.sub("", name)
    return name


def local_file_name(family: str, style: str, weight: str, extension: str) -> str:
    stem = sanitize_filename(family + style + weight) or "font"
    return f"{stem}.{sanitize_filename(extension)}"


def extension_for(reference: str) -> str:
    """Format tag from a font reference: the text after the last dot, minus any query/fragment."""
    path = re.split(r"[#?]", reference, maxsplit=1)[0]
    return path.rsplit(".", 1)[-1]


def resolve_url(origin: str, reference: str) -> str:
    """Resolve a src reference against the stylesheet origin.

    Local stylesheets have no origin, so their references pass through as-is.
    """
    if not origin:
        return reference
    try:
        return urljoin(origin + "/", reference)
    except ValueError:
        # unparseable, e.g. a broken IPv6 host; left for the fetcher to reject
        return reference


def build_source_entry(context: RunContext, family, style, weight, reference) -> SourceEntry:
    extension = extension_for(reference)
    file_name = local_file_name(family, style, weight, extension)
    return SourceEntry(
        local_file_name=file_name,
        extension=extension,
        local_path=context.destination_directory / file_name,
        resolved_url=resolve_url(context.origin, reference),
    )


# ---------------------------------------------------------------------------
# Font-face extractor
# ---------------------------------------------------------------------------

def extract_src_references(src_value: str) -> list[str]:
    """Return the raw url(...) references in a src value, skipping data: URIs."""
    refs = []
    for match in URL_TOKEN_RE.finditer(src_value):
        ref = match.group(1).strip()
        if ref.lower().startswith("data:"):
            continue
        refs.append(ref)
    return refs


def _fold_font_face(context: RunContext):
    def fold(catalog: dict, rule: CssRule) -> dict:
        family = rule.get("font-family")
        src = rule.get("src")
        if not family or not src:
            return catalog

        style = rule.get("font-style", "")
        weight = rule.get("font-weight", "")

        # style/weight stick to the first rule seen for a family
        current = catalog.get(family) or FontDescriptor(family=family, style=style, weight=weight)
        sources = dict(current.sources)
        for ref in extract_src_references(src):
            entry = build_source_entry(context, family, style, weight, ref)
            sources[entry.extension] = entry

        updated = dict(catalog)
        updated[family] = dataclasses.replace(current, sources=sources)
        return updated

    return fold


def extract_font_faces(rules, context: RunContext) -> dict[str, FontDescriptor]:
    """Build the family -> FontDescriptor catalog from parsed rules."""
    font_faces = [rule for rule in rules if rule.kind == "font-face"]
    return reduce(_fold_font_face(context), font_faces, {})


def catalog_to_dict(catalog: dict) -> dict:
    """JSON-friendly view of the catalog for diagnostics."""
    return {
        family: {
            "style": descriptor.style,
            "weight": descriptor.weight,
            "src": {
                ext: {
                    "name": entry.local_file_name,
                    "extension": entry.extension,
                    "localPath": str(entry.local_path),
                    "url": entry.resolved_url,
                }
                for ext, entry in descriptor.sources.items()
            },
        }
        for family, descriptor in catalog.items()
    }


# ---------------------------------------------------------------------------
# Fetcher
# ---------------------------------------------------------------------------

async def fetch_font(client: httpx.AsyncClient, entry: SourceEntry):
    """Stream one font file to its local path."""
    try:
        parsed = urlparse(entry.resolved_url)
    except ValueError as e:
        raise ResourceFetchError(entry.resolved_url, e) from e
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ResourceFetchError(entry.resolved_url, "not an absolute http(s) URL")

    try:
        async with client.stream("GET", entry.resolved_url) as response:
            response.raise_for_status()
            with open(entry.local_path, "wb") as f:
                async for chunk in response.aiter_bytes():
                    f.write(chunk)
    except (httpx.HTTPError, httpx.InvalidURL, ValueError, OSError) as e:
        entry.local_path.unlink(missing_ok=True)
        raise ResourceFetchError(entry.resolved_url, e) from e


async def _download_entry(client, entry: SourceEntry) -> DownloadResult:
    try:
        await fetch_font(client, entry)
    except ResourceFetchError as e:
        print(f"  Warning: {e}")
        return DownloadResult(entry=entry, success=False, error=str(e.cause))
    return DownloadResult(entry=entry, success=True)


async def download_fonts(catalog: dict, timeout=30.0, transport=None) -> list[DownloadResult]:
    """Download every source in the catalog concurrently and wait for all of them."""
    # one download per local path; distinct families can sanitize to the same name
    by_path = {}
    for descriptor in catalog.values():
        for entry in descriptor.sources.values():
            if entry.local_path in by_path:
                print(f"  Warning: {entry.resolved_url} maps to {entry.local_file_name}, already taken; skipping")
                continue
            by_path[entry.local_path] = entry
    entries = list(by_path.values())
    if not entries:
        return []

    async with httpx.AsyncClient(
        follow_redirects=True,
        timeout=timeout,
        headers={"User-Agent": USER_AGENT},
        transport=transport,
    ) as client:
        results = await asyncio.gather(*(_download_entry(client, entry) for entry in entries))
    return list(results)


# ---------------------------------------------------------------------------
# Fragment generator
# ---------------------------------------------------------------------------

def relativize(entry: SourceEntry, context: RunContext, config: FontConfig) -> str:
    placeholder = f"#{{{config.font_path_variable}}}#{{{config.font_folder_variable}}}"
    relative = entry.local_path.relative_to(context.destination_directory).as_posix()
    return f"{placeholder}/{relative}"


def render_fragment(catalog: dict, context: RunContext, config: FontConfig) -> str:
    """Render the catalog as a SASS fragment pointing at the local font copies."""
    blocks = []
    for family, descriptor in catalog.items():
        src_parts = [
            f'url("{relativize(entry, context, config)}") format("{ext}")'
            for ext, entry in descriptor.sources.items()
        ]
        src = ",\n       ".join(src_parts)
        blocks.append(
            f"@font-face {{\n"
            f"  font-family: {family};\n"
            f"  src: {src};\n"
            f"}}"
        )

    return (
        f"// general font variables\n"
        f"{config.font_path_variable}: '{config.font_path_value}';\n"
        f"{config.font_folder_variable}: '{context.folder_name}';\n"
        f"\n"
        f"// local font face definitions\n"
        + "\n\n".join(blocks)
        + "\n"
    )


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

def run(identifier: str, config: FontConfig | None = None, transport=None) -> RunResult:
    """Load, parse, extract, download and render for one stylesheet.

    LoadError and ParseError propagate; per-font download failures are
    collected in RunResult.downloads.
    """
    config = config or FontConfig()

    context = prepare_destination(identifier, config)
    print_step(f"Destination: {context.destination_directory}")

    css_text, origin = load_stylesheet(identifier, timeout=config.timeout)
    context = dataclasses.replace(context, origin=origin)

    rules = parse_stylesheet(css_text)
    catalog = extract_font_faces(rules, context)
    total = sum(len(d.sources) for d in catalog.values())
    print_step(f"Found {len(catalog)} font famil{'y' if len(catalog) == 1 else 'ies'}, {total} file(s)")

    downloads = asyncio.run(download_fonts(catalog, timeout=config.timeout, transport=transport))
    ok = sum(1 for d in downloads if d.success)
    print_step(f"Downloaded {ok}/{len(downloads)} file(s)")

    fragment = render_fragment(catalog, context, config)
    return RunResult(context=context, catalog=catalog, downloads=downloads, fragment=fragment)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def main(argv=None):
    parser = argparse.ArgumentParser(
        description=(
            "Download the fonts referenced by a stylesheet's @font-face rules "
            "and print a SASS fragment pointing at the local copies."
        )
    )
    parser.add_argument("stylesheet", help="Stylesheet URL (http/https) or local file path")
    parser.add_argument("--base-dir", help="Base directory for downloaded fonts (default: ./data/fonts)")
    parser.add_argument("--config", help="Optional JSON config file with path/variable settings")
    parser.add_argument("--output", help="Also write the generated fragment to this file")
    parser.add_argument("--timeout", type=float, help="Per-request timeout in seconds (default: 30)")
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config) if args.config else FontConfig()
    except ConfigError as e:
        print(f"Error: {e}")
        return 1
    if args.base_dir:
        config.base_directory = args.base_dir
    if args.timeout is not None:
        config.timeout = args.timeout

    print(f"Localizing fonts from: {args.stylesheet}")
    try:
        result = run(args.stylesheet, config)
    except (LoadError, ParseError) as e:
        print(f"Error: {e}")
        return 1

    print("\nFont sources found:")
    print(json.dumps(catalog_to_dict(result.catalog), indent=2, ensure_ascii=False))

    if result.failed:
        print(f"\n{len(result.failed)} font file(s) could not be downloaded:")
        for d in result.failed:
            print(f"  {d.entry.local_file_name} <- {d.entry.resolved_url}: {d.error}")

    print()
    print(result.fragment)

    if args.output:
        out_path = Path(args.output)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(result.fragment, encoding="utf-8")
        print(f"Fragment saved to: {out_path}")

    return 2 if result.failed else 0


if __name__ == "__main__":
    sys.exit(main())
