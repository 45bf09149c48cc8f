"""Release title parsing and normalization.

``parse_title`` runs a fixed sequence of extraction steps over a release
title. Every step returns the fields it found together with the residual
text (the input with the matched spans removed), and the next step only
sees that residue. Whatever survives all steps and the final cleanup is the
show's base name.
"""

import hashlib
import re
from typing import NamedTuple

from .models import ParsedTitle

_TAG_EDGE_LEFT = r"(?<![A-Za-z0-9])"
_TAG_EDGE_RIGHT = r"(?![A-Za-z0-9])"

# Maps full language names to ISO 639-1 codes
LANGUAGE_NAMES = {
    "tamil": "ta",
    "telugu": "te",
    "hindi": "hi",
    "malayalam": "ml",
    "kannada": "kn",
    "english": "en",
    "korean": "ko",
    "japanese": "ja",
    "chinese": "zh",
    "mandarin": "zh",
    "bengali": "bn",
    "marathi": "mr",
    "punjabi": "pa",
    "gujarati": "gu",
    "urdu": "ur",
    "spanish": "es",
    "french": "fr",
    "german": "de",
    "italian": "it",
    "portuguese": "pt",
    "russian": "ru",
    "arabic": "ar",
    "thai": "th",
    "turkish": "tr",
    "indonesian": "id",
}

# Short forms are only trusted inside brackets or "+" lists, where they
# cannot be part of the show name.
LANGUAGE_ABBREVIATIONS = {
    "tam": "ta",
    "tel": "te",
    "hin": "hi",
    "mal": "ml",
    "kan": "kn",
    "eng": "en",
    "kor": "ko",
    "jap": "ja",
    "jpn": "ja",
    "chi": "zh",
    "ben": "bn",
    "mar": "mr",
    "spa": "es",
    "fre": "fr",
    "ger": "de",
    "ita": "it",
    "por": "pt",
    "rus": "ru",
    "ara": "ar",
    "tur": "tr",
}

QUALITY_TAGS = {
    "web-dl": "WEB-DL",
    "webdl": "WEB-DL",
    "webrip": "WEBRip",
    "web-rip": "WEBRip",
    "hdrip": "HDRip",
    "bluray": "BluRay",
    "blu-ray": "BluRay",
    "brrip": "BRRip",
    "bdrip": "BDRip",
    "dvdrip": "DVDRip",
    "dvdscr": "DVDScr",
    "hdtv": "HDTV",
    "tvrip": "TVRip",
    "hdcam": "HDCAM",
    "predvd": "PreDVD",
    "remux": "REMUX",
    "untouched": "UNTOUCHED",
    "hdr": "HDR",
}

VIDEO_CODECS = {
    "x264": "x264",
    "h264": "x264",
    "h.264": "x264",
    "x265": "x265",
    "h265": "x265",
    "h.265": "x265",
    "hevc": "HEVC",
    "avc": "AVC",
    "vp9": "VP9",
}

AUDIO_CODECS = {
    "ddp5.1": "DDP5.1",
    "dd+5.1": "DDP5.1",
    "dd5.1": "DD5.1",
    "aac": "AAC",
    "ac3": "AC3",
    "dts": "DTS",
    "opus": "Opus",
    "mp3": "MP3",
    "5.1": "5.1",
    "7.1": "7.1",
}


def _vocabulary_pattern(vocabulary: dict[str, str]) -> re.Pattern:
    """Alternation over vocabulary keys, longest first so prefixes lose."""
    keys = sorted(vocabulary, key=len, reverse=True)
    alternation = "|".join(re.escape(key).replace(r"\ ", r"\s?") for key in keys)
    return re.compile(f"{_TAG_EDGE_LEFT}({alternation}){_TAG_EDGE_RIGHT}", re.IGNORECASE)


PATTERNS = {
    # Year: 2025 or (2025)
    "year": re.compile(r"\(?\b((?:19|20)\d{2})\b\)?"),
    # Season + episode: S06E01, S01 EP(01-08), S01E01-04, S02 E03 - E05
    "season_episode": re.compile(
        r"\bS(\d{1,2})\s*[-._]?\s*(?:EP|E)\s*\(?\s*(\d{1,4})"
        r"(?:\s*(?:-|~|to)\s*(?:EP|E)?\s*(\d{1,4})(?![\dA-Za-z]))?\s*\)?",
        re.IGNORECASE,
    ),
    # Season only: S01
    "season_short": re.compile(r"\bS(\d{1,2})\b", re.IGNORECASE),
    # Season word form: Season 3, Season-03
    "season_word": re.compile(r"\bSeason\s*[-:.]?\s*(\d{1,2})\b", re.IGNORECASE),
    # Episode: E05, EP 05, EP(01-10), Episode 5, Episodes 1-4
    "episode": re.compile(
        r"\b(?:Episodes?\s*|EP\s*|E)\(?\s*(\d{1,4})"
        r"(?:\s*(?:-|~|to)\s*(?:EP|E)?\s*(\d{1,4})(?![\dA-Za-z]))?\s*\)?",
        re.IGNORECASE,
    ),
    # Season pack / complete series markers
    "pack": re.compile(
        r"\b(?:Complete\s+(?:Series|Season|Collection)|Season\s+Pack|Full\s+Season|Complete)\b",
        re.IGNORECASE,
    ),
    # Resolution: 720p, 1080p, 2160p, 4K, HD, HQ
    "resolution": re.compile(r"\b(\d{3,4}p|4K|HD|HQ)\b", re.IGNORECASE),
    "quality": _vocabulary_pattern(QUALITY_TAGS),
    "video_codec": _vocabulary_pattern(VIDEO_CODECS),
    # Audio codec with an optional channel layout: DDP5.1, AAC 2.0, AAC2.0
    "audio_codec": re.compile(
        r"(?<![A-Za-z0-9.])(DDP\s?5\.1|DD\+\s?5\.1|DD\s?5\.1|AAC|AC3|DTS|Opus|MP3|5\.1|7\.1)"
        r"(?:\s?[1-7]\.[01])?" + _TAG_EDGE_RIGHT,
        re.IGNORECASE,
    ),
    "bitrate": re.compile(r"(?<![\w.])\d+(?:\.\d+)?\s?[KM]bps\b", re.IGNORECASE),
    # Language lists: Tamil + Telugu, [Tam + Tel + Hin], Tam/Mal
    "language_list": re.compile(
        r"(?<![A-Za-z])([A-Za-z]{2,10}(?:\s*[+/&,]\s*[A-Za-z]{2,10})+)(?![A-Za-z])"
    ),
    "language_name": re.compile(
        r"\b(" + "|".join(sorted(LANGUAGE_NAMES, key=len, reverse=True)) + r")\b",
        re.IGNORECASE,
    ),
    "language_abbreviation": re.compile(
        r"\b(" + "|".join(LANGUAGE_ABBREVIATIONS) + r")\b", re.IGNORECASE
    ),
    "bracket_group": re.compile(r"[\[(]([^\[\]()]*)[\])]"),
    # Size: 7GB, 1.4 GB, 550MB, 2.3GiB
    "size": re.compile(r"(?<![\d.])(\d+(?:\.\d+)?)\s?([KMGT])(i?)B\b", re.IGNORECASE),
    "subtitles": re.compile(
        r"\b(?:E-?Subs?|M-?Subs?|Multi[- ]?Subs?|Subtitles?|Subbed|Subs)\b", re.IGNORECASE
    ),
    "extension": re.compile(r"\.(?:mkv|mp4|avi|m4v|mov|wmv|webm|ts|torrent)\b", re.IGNORECASE),
    # Watermarks: www.1TamilBlasters.fi, https://example.net/x, site.lat
    "domain": re.compile(
        r"(?:https?://|www\.)\S+"
        r"|\b[A-Za-z0-9-]*[A-Za-z][A-Za-z0-9-]*\.(?:com|net|org|fi|lat|xyz|cc|ws|pw|mx|bz|"
        r"buzz|site|ink|lol|info|sx|app|dev)\b(?:/\S*)?",
        re.IGNORECASE,
    ),
    "junk": re.compile(
        r"\b(?:TRUE|ORG|PROPER|REPACK|UNCUT|Dual[- ]Audio|Multi[- ]Audio|Audios?|"
        r"Dubbed|Rip|ATMOS|10bit|8bit|AMZN|NF|DSNP|HMAX|ATVP|ZEE5)\b",
        re.IGNORECASE,
    ),
    # Dots and underscores used as word separators. Decimals (5.1, 7.2GB)
    # and H.264/H.265 keep their dot.
    "separator": re.compile(r"_|(?<!\d)(?<!\bH)\.|(?<=\d)\.(?!\d{1,2}(?!\d))", re.IGNORECASE),
    # Scene release group glued to the last token: ...x264-GRP
    "release_group": re.compile(
        r"(?<=[^\s-])-(?!(?:EP?)?\d+$|(?:DL|Rip|Ray)$)[A-Za-z0-9]*[A-Za-z][A-Za-z0-9]*$",
        re.IGNORECASE,
    ),
    # Groups left holding only separators, punctuation or digits
    "empty_group": re.compile(r"[\[({][^\[\](){}A-Za-z]*[\])}]"),
    "trailing_group": re.compile(r"\s*[\[(][^\[\]()]*[\])]\s*$"),
    "meta_token": re.compile(r"(?:S|EP?)?\d+", re.IGNORECASE),
}


class SeasonEpisode(NamedTuple):
    season: int | None
    episode_start: int | None
    episode_end: int | None


def _strip_span(text: str, match: re.Match) -> str:
    return f"{text[:match.start()]} {text[match.end():]}"


def _collect(pattern: re.Pattern, text: str, vocabulary: dict[str, str] | None = None):
    """Collect every canonicalized match of ``pattern`` and remove them from ``text``."""
    found = []
    for match in pattern.finditer(text):
        token = match.group(1)
        if vocabulary is not None:
            key = re.sub(r"\s+", "", token.lower())
            token = vocabulary.get(key, token)
        if token not in found:
            found.append(token)
    return found, pattern.sub(" ", text)


def split_separators(text: str) -> str:
    """Step 0: drop file extensions and watermarks, then read dots and underscores as spaces.

    Scene-style names (no whitespace at all) also lose a trailing ``-GROUP``
    release tag.
    """
    text = PATTERNS["extension"].sub(" ", text)
    text = PATTERNS["domain"].sub(" ", text).strip()
    if not re.search(r"\s", text) and PATTERNS["separator"].search(text):
        text = PATTERNS["release_group"].sub("", text)
    return PATTERNS["separator"].sub(" ", text)


def extract_year(text: str) -> tuple[int | None, str]:
    """Step 1: the first four-digit year, optionally parenthesized."""
    match = PATTERNS["year"].search(text)
    if not match:
        return None, text
    return int(match.group(1)), _strip_span(text, match)


def _episode_range(start: str, end: str | None) -> tuple[int, int]:
    first = int(start)
    last = int(end) if end else first
    if last < first:
        last = first
    return first, last


def extract_season_episode(text: str) -> tuple[SeasonEpisode, str]:
    """Step 2: season and episode numbers, ranges and season-pack markers.

    Forms are tried in priority order:
    1. Combined: S06E01, S01E01-04, S01 EP(01-08)
    2. Season alone: S01, then Season 3
    3. Episode alone: E05, EP(01-10), Episode 5
    4. Pack markers: Complete Series, Season Pack (fill missing numbers with 1)
    """
    season = episode_start = episode_end = None

    match = PATTERNS["season_episode"].search(text)
    if match:
        season = int(match.group(1))
        episode_start, episode_end = _episode_range(match.group(2), match.group(3))
        text = _strip_span(text, match)
    else:
        match = PATTERNS["season_short"].search(text) or PATTERNS["season_word"].search(text)
        if match:
            season = int(match.group(1))
            text = _strip_span(text, match)

        match = PATTERNS["episode"].search(text)
        if match:
            episode_start, episode_end = _episode_range(match.group(1), match.group(2))
            text = _strip_span(text, match)

    match = PATTERNS["pack"].search(text)
    if match:
        text = _strip_span(text, match)
        if season is None:
            season = 1
        if episode_start is None:
            episode_start = episode_end = 1

    return SeasonEpisode(season, episode_start, episode_end), text


def extract_resolutions(text: str) -> tuple[set[str], str]:
    """Step 3: resolution tags such as 1080p, 4K, HD."""
    found, residual = _collect(PATTERNS["resolution"], text)
    return {tag.lower() if tag[-1] in "pP" else tag.upper() for tag in found}, residual


def extract_quality_tags(text: str) -> tuple[set[str], str]:
    """Step 4: distribution source tags (WEB-DL, HDRip, BluRay, ...)."""
    found, residual = _collect(PATTERNS["quality"], text, QUALITY_TAGS)
    return set(found), residual


def extract_video_codecs(text: str) -> tuple[set[str], str]:
    """Step 5: video codecs."""
    found, residual = _collect(PATTERNS["video_codec"], text, VIDEO_CODECS)
    return set(found), residual


def extract_audio_codecs(text: str) -> tuple[set[str], str]:
    """Step 6: audio codecs and channel layouts. Bitrates are dropped."""
    found, residual = _collect(PATTERNS["audio_codec"], text, AUDIO_CODECS)
    return set(found), PATTERNS["bitrate"].sub(" ", residual)


def _language_code(token: str) -> str | None:
    key = token.lower()
    return LANGUAGE_NAMES.get(key) or LANGUAGE_ABBREVIATIONS.get(key)


def _list_languages(text: str) -> tuple[set[str], str]:
    languages: set[str] = set()
    pieces = []
    last = 0
    for match in PATTERNS["language_list"].finditer(text):
        tokens = re.split(r"\s*[+/&,]\s*", match.group(1))
        codes = [_language_code(token) for token in tokens]
        if not any(codes):
            continue
        # Unknown long words mean this is prose, not a language list
        if any(code is None and len(token) > 3 for token, code in zip(tokens, codes)):
            continue
        languages.update(code or token.lower() for token, code in zip(tokens, codes))
        pieces.append(text[last:match.start()])
        last = match.end()
    pieces.append(text[last:])
    return languages, " ".join(pieces)


def _bracketed_abbreviations(text: str) -> tuple[set[str], str]:
    languages: set[str] = set()

    def replace(match: re.Match) -> str:
        inner = match.group(1)
        codes = [
            LANGUAGE_ABBREVIATIONS[m.group(1).lower()]
            for m in PATTERNS["language_abbreviation"].finditer(inner)
        ]
        if not codes:
            return match.group(0)
        languages.update(codes)
        inner = PATTERNS["language_abbreviation"].sub(" ", inner)
        return f"{match.group(0)[0]}{inner}{match.group(0)[-1]}"

    return languages, PATTERNS["bracket_group"].sub(replace, text)


def extract_languages(text: str) -> tuple[set[str], str]:
    """Step 7: language lists and discrete language tokens as ISO 639-1 codes.

    Unmapped short tokens inside a language list are kept verbatim (lowercased).
    """
    languages, text = _list_languages(text)

    names, text = _collect(PATTERNS["language_name"], text, LANGUAGE_NAMES)
    languages.update(names)

    abbreviations, text = _bracketed_abbreviations(text)
    languages.update(abbreviations)
    return languages, text


def extract_sizes(text: str) -> tuple[list[str], str]:
    """Step 8: sizes such as 7GB or 1.4 GiB, normalized to ``7GB``/``1.4GiB``."""
    sizes = []
    for match in PATTERNS["size"].finditer(text):
        number, magnitude, binary = match.groups()
        size = f"{number}{magnitude.upper()}{'iB' if binary else 'B'}"
        if size not in sizes:
            sizes.append(size)
    return sizes, PATTERNS["size"].sub(" ", text)


def extract_subtitle_flag(text: str) -> tuple[bool, str]:
    """Step 9: whether the release advertises subtitles."""
    if not PATTERNS["subtitles"].search(text):
        return False, text
    return True, PATTERNS["subtitles"].sub(" ", text)


def _collapse(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def clean_residual(text: str) -> str:
    """Step 10: strip extensions, watermarks, release groups and leftover junk."""
    text = PATTERNS["extension"].sub(" ", text)
    text = PATTERNS["domain"].sub(" ", text)
    text = PATTERNS["bitrate"].sub(" ", text)
    text = re.sub(r"(?<=\w)[._](?=\w)", " ", text)
    text = PATTERNS["junk"].sub(" ", text)

    previous = None
    while previous != text:
        previous = text
        text = PATTERNS["empty_group"].sub(" ", text)
        text = PATTERNS["trailing_group"].sub(" ", text)

    text = re.sub(r"[\[\]{}|~_+]", " ", text)
    text = re.sub(r"(?:\s*[-–—:]\s*){2,}", " - ", text)
    text = _collapse(text)
    return text.strip(" -–—:.,;&/(")


def display_title(
    base: str,
    year: int | None,
    season: int | None,
    episode_start: int | None,
    episode_end: int | None,
) -> str:
    """Step 11: rebuild the canonical display title."""
    parts = [base]
    if year is not None:
        parts.append(f"({year})")
    if season is not None:
        parts.append(f"S{season:02d}")
    if episode_start is not None:
        if episode_end is not None and episode_end > episode_start:
            parts.append(f"EP({episode_start:02d}-{episode_end:02d})")
        else:
            parts.append(f"EP{episode_start:02d}")
    return " ".join(part for part in parts if part)


def _minimal_clean(raw: str) -> str:
    """Fallback cleaning: drop bracket and paren groups only."""
    text = _collapse(PATTERNS["bracket_group"].sub(" ", raw)).strip(" -:")
    return text or _collapse(raw)


def _is_degenerate(base: str) -> bool:
    """True when nothing but year/season/episode numbers survived."""
    tokens = [token for token in re.split(r"[\W_]+", base) if token]
    return all(PATTERNS["meta_token"].fullmatch(token) for token in tokens)


def parse_title(raw: str) -> ParsedTitle:
    """Parse a free-text release title into structured metadata.

    Never raises; titles that cannot be parsed yield a ParsedTitle whose base
    name is a lightly cleaned copy of the input.

    Args:
        raw: Thread title or release descriptive name.

    Returns:
        ParsedTitle with the canonical display title filled in.
    """
    text = split_separators(raw or "")
    year, text = extract_year(text)
    season_episode, text = extract_season_episode(text)
    resolutions, text = extract_resolutions(text)
    quality_tags, text = extract_quality_tags(text)
    codecs, text = extract_video_codecs(text)
    audio_codecs, text = extract_audio_codecs(text)
    languages, text = extract_languages(text)
    sizes, text = extract_sizes(text)
    has_subtitles, text = extract_subtitle_flag(text)
    base = clean_residual(text)

    season, episode_start, episode_end = season_episode
    title = display_title(base, year, season, episode_start, episode_end)

    # Over-eager stripping can eat the whole name on short titles
    if _is_degenerate(base):
        base = _minimal_clean(raw or "")
        title = base

    return ParsedTitle(
        base_show_name=base,
        year=year,
        season=season if season is not None else 1,
        season_detected=season is not None,
        episode_start=episode_start,
        episode_end=episode_end,
        languages=languages,
        resolutions=resolutions,
        codecs=codecs,
        audio_codecs=audio_codecs,
        quality_tags=quality_tags,
        sizes=sizes,
        has_subtitles=has_subtitles,
        canonical_display_title=title,
    )


# Plural forms fold too, so dropping a plural "s" afterwards cannot create a new match
SYNONYMS = [
    (re.compile(r"\bseasons?\b"), "s"),
    (re.compile(r"\bepisodes?\b"), "ep"),
    (re.compile(r"\bparts?\b"), "p"),
    (re.compile(r"\b(?:volumes?|vols?)\b"), "v"),
]


def normalize(text: str) -> str:
    """Normalize a title for fuzzy matching.

    Lowercases, turns punctuation into spaces, folds a few synonyms and
    their plurals (season -> s, episode -> ep, part -> p, volume -> v),
    drops a plural trailing ``s`` and collapses whitespace. Idempotent.
    """
    if not text:
        return ""
    value = text.lower()
    value = re.sub(r"[^\w\s]|_", " ", value)
    for pattern, replacement in SYNONYMS:
        value = pattern.sub(replacement, value)
    value = re.sub(r"(?<=\w\w)(?<!s)s\b", "", value)
    return _collapse(value)


def make_id(text: str) -> str:
    """Deterministic hyphenated identifier derived from ``normalize``."""
    slug = normalize(text).replace(" ", "-")
    slug = re.sub(r"-{2,}", "-", slug).strip("-")
    if slug:
        return slug
    return hashlib.sha256((text or "").encode("utf-8")).hexdigest()[:12]
