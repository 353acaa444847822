#!/usr/bin/env python3
"""
threads_extractor.py: Direct media URL extractor for Threads posts

• Validates and canonicalizes post URLs (threads.net / threads.com)
• Renders the post in headless Chromium (Playwright) and reads the live DOM
• Classifies the post as video or image
• Runs an ordered chain of extraction strategies over the rendered page
• Recovers title, duration and quality-tier URLs from embedded page state
• Streams resolved media through requests without recompression
"""

from __future__ import annotations

import argparse
import html as html_lib
import json
import logging
import os
import re
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterator, List, Mapping, Optional, Pattern, Tuple
from urllib.parse import urlparse

import requests

from browser import BrowserSession, NavigationError, SnapshotSession

logger = logging.getLogger(__name__)

# ───────────────────────────────── CONFIG ───────────────────────────────── #

class Config:
    USER_AGENT = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    VIEWPORT = {"width": 1920, "height": 1080}

    CANONICAL_HOST = "www.threads.net"
    # Hosts equal to, or subdomains of, these
    ALLOWED_DOMAINS = ["threads.com", "threads.net"]

    # Timeouts (milliseconds unless noted)
    NAVIGATION_TIMEOUT_MS = 15000
    LOAD_TIMEOUT_MS = 15000
    ELEMENT_TIMEOUT_MS = 5000
    PROBE_TIMEOUT_MS = 3000
    SETTLE_DELAY = 1.0          # seconds
    ELEMENT_SETTLE_DELAY = 0.5  # seconds

    VIDEO_WAIT_SELECTOR = "video, [data-testid*='video'], [role='video'], video[src]"

    # Byte proxy / downloads
    FETCH_TIMEOUT = 30
    MAX_RETRIES = 3
    CHUNK_SIZE = 8192

    BROWSER_ARGS = [
        "--disable-gpu",
        "--disable-dev-shm-usage",
        "--disable-background-timer-throttling",
        "--disable-backgrounding-occluded-windows",
        "--disable-renderer-backgrounding",
        "--disable-features=TranslateUI",
        "--disable-ipc-flooding-protection",
        "--no-sandbox",
    ]

    # Media URL heuristics
    VIDEO_SUFFIXES = [".mp4", ".webm", ".mov", ".m4v", ".avi", ".mkv"]
    IMAGE_SUFFIXES = [".jpg", ".jpeg", ".png", ".webp", ".gif"]
    CONTENT_IMAGE_SUFFIXES = [".jpg", ".jpeg", ".png", ".webp"]
    VIDEO_CDN_MARKERS = ["video.fbcdn.net", "scontent-video", "video.xx.fbcdn.net", "video-"]
    PRIMARY_CDN = "cdninstagram.com"
    SECONDARY_CDNS = ["fbcdn.net", "scontent"]
    TRUSTED_HOSTS = ["threads.net", "fbcdn.net", "scontent"]
    CONTENT_CDNS = ["cdninstagram.com", "fbcdn.net", "scontent"]
    PROXY_DOMAINS = ["cdninstagram.com", "fbcdn.net"]
    VIDEO_KEYWORDS = ["video", "playable", "stream", "media", ".mp4", ".webm", ".mov"]
    UI_ASSET_KEYWORDS = [
        "profile", "avatar", "logo", "icon", "badge", "button", "default", "safe_image",
    ]
    IMAGE_SIZE_BONUSES = [("1080x1080", 50), ("720x720", 30), ("640x640", 20)]
    FULL_RES_TOKENS = ["full_res", "original"]
    FULL_RES_BONUS = 25
    IMAGE_ACCEPT_SCORE = 50

    TITLE_SUFFIXES = [" | Facebook", " - Facebook", " • Threads", " | Threads"]

    @staticmethod
    def browser_options() -> Dict:
        """Launch options, read from the environment at call time."""
        return {
            "user_agent": Config.USER_AGENT,
            "viewport": Config.VIEWPORT,
            "probe_timeout_ms": Config.PROBE_TIMEOUT_MS,
            "headless": os.getenv("HEADLESS", "1").lower() not in ("0", "false", "no"),
            "executable_path": os.getenv("CHROME_PATH") or None,
            "proxy": os.getenv("HTTP_PROXY") or None,
            "args": Config.BROWSER_ARGS,
        }

# ───────────────────────────────── LOGGING ───────────────────────────────── #

def setup_logging(log_file: Optional[str] = None) -> logging.Logger:
    """Configure logging with file and console handlers."""
    root = logging.getLogger()
    if getattr(root, "_threads_configured", False):
        return root
    root.setLevel(logging.DEBUG)

    formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - [%(funcName)s] - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # File handler
    fh = logging.FileHandler(log_file or os.getenv("EXTRACTION_LOG", "extraction.log"))
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(formatter)

    # Console handler
    ch = logging.StreamHandler()
    ch.setLevel(logging.INFO)
    ch.setFormatter(formatter)

    root.addHandler(fh)
    root.addHandler(ch)
    root._threads_configured = True
    return root

# ───────────────────────────────── ERRORS ────────────────────────────────── #

class ExtractionError(Exception):
    """Base class for every failure reported to the caller. The message is user-facing."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidURL(ExtractionError):
    pass


class UntrustedDomain(ExtractionError):
    pass


class MalformedPostPath(ExtractionError):
    pass


class NavigationFailure(ExtractionError):
    pass


class NoMediaFound(ExtractionError):
    pass


class InternalFault(ExtractionError):
    pass


class MediaFetchError(Exception):
    """Upstream media could not be fetched."""


class MediaNotFound(MediaFetchError):
    """Upstream answered, but not with the media."""

# ───────────────────────────────── DATA MODELS ───────────────────────────── #

class MediaType(str, Enum):
    VIDEO = "video"
    IMAGE = "image"


@dataclass(frozen=True)
class PostReference:
    """A validated Threads post address."""
    host: str
    handle: str
    post_id: str
    path: str

    @property
    def url(self) -> str:
        return f"https://{Config.CANONICAL_HOST}{self.path}"


def _freeze_mappings(record) -> None:
    # Read-only copies; callers cannot mutate a result after construction
    for name in ("video_urls", "metadata"):
        object.__setattr__(record, name, MappingProxyType(dict(getattr(record, name))))


@dataclass(frozen=True)
class PostMetadata:
    """Auxiliary fields recovered from embedded page state."""
    video_id: Optional[str] = None
    title: Optional[str] = None
    duration: Optional[int] = None
    video_urls: Mapping[str, str] = field(default_factory=dict)
    metadata: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        _freeze_mappings(self)


@dataclass(frozen=True)
class ExtractionResult:
    media_url: str
    media_type: MediaType
    video_id: Optional[str] = None
    title: Optional[str] = None
    duration: Optional[int] = None  # seconds
    video_urls: Mapping[str, str] = field(default_factory=dict)  # quality tier -> url
    metadata: Mapping[str, str] = field(default_factory=dict)
    strategy: str = ""

    def __post_init__(self):
        _freeze_mappings(self)

    @property
    def has_metadata(self) -> bool:
        return bool(self.video_id or self.title or self.duration or self.video_urls or self.metadata)

    def with_metadata(self, meta: PostMetadata) -> "ExtractionResult":
        return replace(
            self,
            video_id=meta.video_id,
            title=meta.title,
            duration=meta.duration,
            video_urls=meta.video_urls,
            metadata=meta.metadata,
        )

    def to_dict(self) -> Dict:
        payload = {
            "mediaUrl": self.media_url,
            "mediaType": self.media_type.value,
            "success": True,
        }
        if self.video_id:
            payload["videoId"] = self.video_id
        if self.title:
            payload["title"] = self.title
        if self.duration:
            payload["duration"] = self.duration
        if self.video_urls:
            payload["videoUrls"] = dict(self.video_urls)
        if self.metadata:
            payload["metadata"] = dict(self.metadata)
        return payload

# ───────────────────────────────── URL NORMALIZER ────────────────────────── #

POST_PATH_PATTERN = re.compile(r'^/@([\w.-]+)/post/([\w-]+)/?')


def parse_post_url(raw_url: str) -> PostReference:
    """
    Validate a Threads post address.

    Raises:
        InvalidURL: empty or unparseable input
        UntrustedDomain: host outside the Threads allow-set
        MalformedPostPath: path is not /@handle/post/ID
    """
    if not raw_url or not raw_url.strip():
        raise InvalidURL("URL is required")

    try:
        parsed = urlparse(raw_url.strip())
        host = parsed.hostname or ""
    except ValueError as e:
        raise InvalidURL(f"invalid URL format: {e}") from e

    if not _host_under(host.lower(), Config.ALLOWED_DOMAINS):
        raise UntrustedDomain("URL must be from threads.com or threads.net")

    match = POST_PATH_PATTERN.match(parsed.path)
    if not match:
        raise MalformedPostPath(
            "invalid Threads post URL format - must be a post (/@username/post/POST_ID)"
        )

    return PostReference(host=host, handle=match.group(1), post_id=match.group(2), path=parsed.path)


def normalize_post_url(raw_url: str) -> str:
    """Canonical https://www.threads.net/... form with query and fragment dropped."""
    return parse_post_url(raw_url).url

# ───────────────────────────── MEDIA PREDICATES ──────────────────────────── #

def _host(url: str) -> str:
    try:
        return urlparse(url).hostname or ""
    except ValueError:
        return ""


def _contains_any(text: str, needles: List[str]) -> bool:
    return any(n in text for n in needles)


def _host_under(host: str, domains: List[str]) -> bool:
    return any(host == d or host.endswith("." + d) for d in domains)


def is_video_url(url: str) -> bool:
    """Is this plausibly a playable video file?"""
    if not url:
        return False
    lowered = url.lower()
    host = _host(lowered)

    if _contains_any(lowered, Config.IMAGE_SUFFIXES):
        return False

    if _contains_any(lowered, Config.VIDEO_SUFFIXES):
        logger.debug(f"Valid video URL by extension: {url}")
        return True

    if _contains_any(host, Config.VIDEO_CDN_MARKERS):
        logger.debug(f"Valid video URL by video CDN host: {url}")
        return True

    if Config.PRIMARY_CDN in host:
        logger.debug(f"Valid video URL by Threads CDN: {url}")
        return True

    if _contains_any(host, Config.SECONDARY_CDNS) and (
        "video" in lowered or _contains_any(lowered, Config.VIDEO_SUFFIXES)
    ):
        return True

    if _contains_any(host, Config.TRUSTED_HOSTS):
        for keyword in Config.VIDEO_KEYWORDS:
            if keyword in lowered:
                logger.debug(f"Valid video URL by keyword '{keyword}': {url}")
                return True

    logger.debug(f"URL rejected as not a valid video: {url}")
    return False


def is_image_url(url: str) -> bool:
    """Is this plausibly a content image (not a UI asset, never a video)?"""
    if not url:
        return False
    lowered = url.lower()

    if _contains_any(lowered, Config.VIDEO_SUFFIXES) or "video" in lowered:
        return False

    if not _contains_any(_host(lowered), Config.CONTENT_CDNS):
        return False

    if not _contains_any(lowered, Config.CONTENT_IMAGE_SUFFIXES):
        return False

    # Profile pictures, logos, UI chrome
    if _contains_any(lowered, Config.UI_ASSET_KEYWORDS):
        return False

    return True


def score_image_url(url: str) -> int:
    """Quality score for ranking image candidates (higher = better, 0 = not an image)."""
    if not is_image_url(url):
        return 0

    score = 50
    lowered = url.lower()
    for token, bonus in Config.IMAGE_SIZE_BONUSES:
        if token in lowered:
            score += bonus
            break

    if _contains_any(lowered, Config.FULL_RES_TOKENS):
        score += Config.FULL_RES_BONUS

    return score


def is_trusted_media_url(url: str) -> bool:
    """Absolute http(s) URL whose host sits under one of the media CDN domains."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and _host_under(parsed.hostname or "", Config.PROXY_DOMAINS)

# ───────────────────────────── MARKUP PATTERNS ───────────────────────────── #

def unescape_json_url(url: str) -> str:
    """Undo the JSON string escapes Threads uses inside embedded state."""
    return url.replace("\\u0026", "&").replace("\\/", "/")


def _pattern_table(pairs: List[Tuple[str, str]]) -> List[Tuple[str, Pattern]]:
    return [(label, re.compile(pattern)) for label, pattern in pairs]


# The URL is the `url` group when a pattern has one, otherwise the whole match.
VIDEO_LOCATOR_PATTERNS = _pattern_table([
    # Threads primary video patterns
    ("video_versions", r'video_versions":\s*\[\s*\{\s*"url":\s*"(?P<url>[^"]+)"'),
    ("video_url", r'"video_url":\s*"(?P<url>[^"]+)"'),
    ("json_mp4", r'"url":\s*"(?P<url>[^"]+\.mp4[^"]*)"'),
    ("video_versions_mp4", r'video_versions"[^}]*"url":\s*"(?P<url>[^"]+\.mp4[^"]*)"'),
    ("playback_url", r'"playback_url":\s*"(?P<url>[^"]+)"'),

    # Meta CDN literals
    ("fbcdn_video", r'https://[^"\'\s]*video[^"\'\s]*fbcdn\.net[^"\'\s]*\.mp4[^"\'\s]*'),
    ("scontent_mp4", r'https://[^"\'\s]*scontent[^"\'\s]*\.mp4[^"\'\s]*'),
    ("cdninstagram_mp4", r'https://[^"\'\s]*cdninstagram\.com[^"\'\s]*\.mp4[^"\'\s]*'),

    # Generic fallbacks
    ("src_mp4", r'"src":\s*"(?P<url>[^"]+\.mp4[^"]*)"'),
    ("browser_native_hd", r'browser_native_hd_url":\s*"(?P<url>[^"]+)"'),
    ("browser_native_sd", r'browser_native_sd_url":\s*"(?P<url>[^"]+)"'),
    ("video_dash_manifest", r'"video_dash_manifest":\s*"(?P<url>[^"]+)"'),
    ("candidates_mp4", r'candidates":\s*\[[^}]*"url":\s*"(?P<url>[^"]+\.mp4[^"]*)"'),
    ("video_resources", r'video_resources"[^}]*"src":\s*"(?P<url>[^"]+\.mp4[^"]*)"'),
    ("data_video_url", r'data-video-url="(?P<url>[^"]+)"'),
    ("data_src_mp4", r'data-src="(?P<url>[^"]+\.mp4[^"]*)"'),
])

IMAGE_LOCATOR_PATTERNS = _pattern_table([
    ("display_url", r'"display_url":\s*"(?P<url>[^"]+)"'),
    ("image_url", r'"image_url":\s*"(?P<url>[^"]+)"'),
    ("json_image", r'"url":\s*"(?P<url>[^"]+\.(?:jpg|jpeg|png|webp)[^"]*)"'),
    ("cdninstagram_image", r'https://[^"\'\s]*cdninstagram\.com[^"\'\s]*\.(?:jpg|jpeg|png|webp)[^"\'\s]*'),
    ("fbcdn_image", r'https://[^"\'\s]*fbcdn\.net[^"\'\s]*\.(?:jpg|jpeg|png|webp)[^"\'\s]*'),
    ("scontent_image", r'https://[^"\'\s]*scontent[^"\'\s]*\.(?:jpg|jpeg|png|webp)[^"\'\s]*'),
])

# Embedded-state signatures that only appear on video posts
VIDEO_MARKUP_SIGNATURES = [re.compile(p) for p in [
    r'"__typename":"Video"',
    r'"__typename":"XDTGraphVideo"',
    r'"is_video":true',
    r'"media_type":2\b',
    r'"media_type":"2"',
    r'"product_type":"clips"',
    r'"product_type":"igtv"',
    r'"video_url":"',
    r'"video_versions":\s*\[',
    r'"video_dash_manifest":"',
    r'"video_duration":',
    r'"has_audio":',
    r'"original_width":.*"original_height":',
    r'"playback_duration_secs":',
]]


def iter_captures(patterns: List[Tuple[str, Pattern]], html: str) -> Iterator[Tuple[str, str]]:
    """Yield (label, unescaped url) for every match, in table order."""
    for label, pattern in patterns:
        for match in pattern.finditer(html):
            raw = match.group("url") if "url" in pattern.groupindex else match.group(0)
            yield label, unescape_json_url(raw)

# ───────────────────────────── METADATA EXTRACTOR ────────────────────────── #

SCALAR_METADATA_PATTERNS = _pattern_table([
    ("video_id", r'"video_id":"?(\d+)"?'),
    ("title", r'<title[^>]*>([^<]+)</title>'),
    ("duration", r'"playable_duration_in_ms":(\d+)'),
])

QUALITY_URL_PATTERNS = _pattern_table([
    ("browser_hd", r'"browser_native_hd_url":"([^"]+)"'),
    ("browser_sd", r'"browser_native_sd_url":"([^"]+)"'),
    ("hd_src", r'"hd_src":"([^"]+)"'),
    ("sd_src", r'"sd_src":"([^"]+)"'),
    ("playable_url", r'"playable_url":"([^"]+)"'),
])


def clean_title(raw: str) -> str:
    title = html_lib.unescape(raw).strip()
    for suffix in Config.TITLE_SUFFIXES:
        if title.endswith(suffix):
            title = title[: -len(suffix)].rstrip()
    return title


def extract_post_metadata(html: Optional[str]) -> PostMetadata:
    """
    Recover optional video fields from raw page markup.

    Every field is independent: a missing pattern only leaves its own field empty.
    """
    if not html:
        return PostMetadata()

    found: Dict[str, str] = {}
    for label, pattern in SCALAR_METADATA_PATTERNS:
        match = pattern.search(html)
        if match:
            found[label] = match.group(1)

    video_id = found.get("video_id")
    title = clean_title(found["title"]) if "title" in found else None
    title = title or None
    duration = int(found["duration"]) // 1000 if "duration" in found else None

    metadata: Dict[str, str] = {}
    if video_id:
        metadata["video_id"] = video_id
        logger.debug(f"Extracted video ID: {video_id}")
    if title:
        metadata["title"] = title
        logger.debug(f"Extracted title: {title}")
    if duration is not None:
        metadata["duration"] = f"{duration} seconds"
        logger.debug(f"Extracted duration: {duration} seconds")

    video_urls: Dict[str, str] = {}
    for label, pattern in QUALITY_URL_PATTERNS:
        match = pattern.search(html)
        if match:
            video_urls[label] = unescape_json_url(match.group(1))
            logger.debug(f"Extracted {label} URL: {video_urls[label]}")

    return PostMetadata(
        video_id=video_id,
        title=title,
        duration=duration,
        video_urls=video_urls,
        metadata=metadata,
    )

# ───────────────────────────── CONTENT CLASSIFIER ────────────────────────── #

VIDEO_META_SELECTORS = [
    'meta[property="og:video:url"]',
    'meta[property="og:video"]',
    'meta[property="og:video:secure_url"]',
    'meta[name="twitter:player:stream"]',
]

IMAGE_META_SELECTORS = [
    'meta[property="og:image"]',
    'meta[property="og:image:url"]',
    'meta[name="twitter:image"]',
]


class ContentClassifier:
    """Best-guess video/image label for a rendered post. Never fails; defaults to image."""

    TYPE_META_SELECTORS = VIDEO_META_SELECTORS + ['meta[property="og:type"][content^="video"]']

    def classify(self, page) -> MediaType:
        probes = [
            ("meta tags", self._from_meta_tags),
            ("video elements", self._from_video_elements),
            ("markup signatures", self._from_markup),
            ("image signals", self._from_image_signals),
        ]
        for name, probe in probes:
            try:
                verdict = probe(page)
            except Exception as e:
                logger.warning(f"Classifier probe '{name}' failed, skipping: {e}")
                continue
            if verdict is not None:
                logger.info(f"Detected {verdict.value} via {name}")
                return verdict

        logger.info("Could not determine content type, defaulting to image")
        return MediaType.IMAGE

    def _from_meta_tags(self, page) -> Optional[MediaType]:
        for selector in self.TYPE_META_SELECTORS:
            meta = page.query(selector)
            content = meta.attribute("content") if meta else None
            if content and ("video" in content or ".mp4" in content):
                logger.debug(f"Found video indicator: {selector} = {content}")
                return MediaType.VIDEO
        return None

    def _from_video_elements(self, page) -> Optional[MediaType]:
        for video in page.query_all("video"):
            for attr in ("src", "data-src"):
                if is_video_url(video.attribute(attr) or ""):
                    return MediaType.VIDEO
            for source in video.query_all("source"):
                if is_video_url(source.attribute("src") or ""):
                    return MediaType.VIDEO
        return None

    def _from_markup(self, page) -> Optional[MediaType]:
        html = page.html()
        if not html:
            return None

        for signature in VIDEO_MARKUP_SIGNATURES:
            if signature.search(html):
                logger.debug(f"Found video indicator pattern: {signature.pattern}")
                return MediaType.VIDEO

        for label, url in iter_captures(VIDEO_LOCATOR_PATTERNS, html):
            if is_video_url(url):
                logger.debug(f"Found video URL in HTML via {label}: {url}")
                return MediaType.VIDEO
        return None

    def _from_image_signals(self, page) -> Optional[MediaType]:
        og_image = page.query('meta[property="og:image"]')
        content = (og_image.attribute("content") if og_image else None) or ""
        if _contains_any(content.lower(), Config.CONTENT_IMAGE_SUFFIXES):
            return MediaType.IMAGE

        image_count = 0
        for img in page.query_all("img"):
            src = (img.attribute("src") or "").lower()
            if _contains_any(src, Config.CONTENT_CDNS) and _contains_any(src, Config.CONTENT_IMAGE_SUFFIXES):
                image_count += 1
        if image_count:
            logger.debug(f"Found {image_count} content images")
            return MediaType.IMAGE
        return None

# ───────────────────────────── EXTRACTION STRATEGIES ─────────────────────── #

ANY_CONTENT = "any"


class ExtractionStrategy:
    """
    One self-contained way of locating media on a rendered page.

    Strategies only read from the page. attempt() returns None to abstain.
    """

    name = "strategy"
    priority = 100
    capability = ANY_CONTENT  # "video", "image" or "any"

    def supports(self, content_type: MediaType) -> bool:
        return self.capability == ANY_CONTENT or self.capability == content_type.value

    def attempt(self, page, content_type: MediaType) -> Optional[ExtractionResult]:
        raise NotImplementedError

    def _result(self, url: str, media_type: MediaType) -> ExtractionResult:
        return ExtractionResult(media_url=url, media_type=media_type, strategy=self.name)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name} priority={self.priority}>"


class DOMElementStrategy(ExtractionStrategy):
    name = "dom"
    priority = 10

    # Most common first
    VIDEO_SELECTORS = [
        "video[src]",
        "video",
        "[data-testid*='video']",
        "[role='video']",
        "video[autoplay]",
        "[data-video-url]",
    ]
    CURRENT_SOURCE_SCRIPT = "el => el.currentSrc || el.src || ''"

    def attempt(self, page, content_type: MediaType) -> Optional[ExtractionResult]:
        if content_type == MediaType.VIDEO:
            return self._find_video(page)
        return self._find_image(page)

    def _video_candidates(self, element) -> Iterator[str]:
        yield element.attribute("src") or ""
        yield element.attribute("data-video-url") or ""
        for source in element.query_all("source"):
            yield source.attribute("src") or ""
        # Players that attach the stream after render never reflect it into src
        yield element.evaluate(self.CURRENT_SOURCE_SCRIPT) or ""

    def _find_video(self, page) -> Optional[ExtractionResult]:
        for selector in self.VIDEO_SELECTORS:
            elements = page.query_all(selector)
            if not elements:
                logger.debug(f"No elements found for selector: {selector}")
                continue
            logger.debug(f"Found {len(elements)} video elements with {selector}")
            for element in elements:
                for url in self._video_candidates(element):
                    if is_video_url(url):
                        logger.info(f"DOM found video URL: {url}")
                        return self._result(url, MediaType.VIDEO)
        logger.debug("No video URLs found in DOM elements")
        return None

    def _find_image(self, page) -> Optional[ExtractionResult]:
        best_url, best_score = "", 0
        for img in page.query_all("img"):
            url = img.attribute("src") or ""
            if not is_image_url(url) or is_video_url(url):
                continue
            score = score_image_url(url)
            if score > best_score:
                best_url, best_score = url, score

        if best_url and best_score > Config.IMAGE_ACCEPT_SCORE:
            logger.info(f"DOM found image URL: {best_url} (score: {best_score})")
            return self._result(best_url, MediaType.IMAGE)
        return None


class SourceMarkupStrategy(ExtractionStrategy):
    name = "source"
    priority = 20

    def attempt(self, page, content_type: MediaType) -> Optional[ExtractionResult]:
        html = page.html()
        if not html:
            return None

        # Embedded state encodes video links even when classification was ambiguous
        for label, url in iter_captures(VIDEO_LOCATOR_PATTERNS, html):
            if is_video_url(url):
                logger.info(f"Source markup found video URL via {label}: {url}")
                return self._result(url, MediaType.VIDEO).with_metadata(extract_post_metadata(html))

        if content_type != MediaType.IMAGE:
            return None

        for label, url in iter_captures(IMAGE_LOCATOR_PATTERNS, html):
            if is_image_url(url) and not is_video_url(url):
                logger.info(f"Source markup found image URL via {label}: {url}")
                return self._result(url, MediaType.IMAGE)

        logger.debug(f"No valid URLs found in source code for {content_type.value}")
        return None


class MetaTagStrategy(ExtractionStrategy):
    name = "meta"
    priority = 30

    def attempt(self, page, content_type: MediaType) -> Optional[ExtractionResult]:
        if content_type == MediaType.VIDEO:
            for selector in VIDEO_META_SELECTORS:
                meta = page.query(selector)
                url = (meta.attribute("content") if meta else None) or ""
                if is_video_url(url):
                    logger.info(f"Meta tags found video URL: {url}")
                    return self._result(url, MediaType.VIDEO)
            return None

        for selector in IMAGE_META_SELECTORS:
            meta = page.query(selector)
            url = (meta.attribute("content") if meta else None) or ""
            if is_image_url(url) and not is_video_url(url):
                logger.info(f"Meta tags found image URL: {url}")
                return self._result(url, MediaType.IMAGE)
            if url:
                logger.debug(f"Rejected URL as not a valid image: {url}")
        return None


class FallbackStrategy(ExtractionStrategy):
    """Loosest possible element scan, used when everything stricter abstained."""

    name = "fallback"
    priority = 40

    LENIENT_EXCLUDES = ["profile", "avatar", "logo", ".mp4"]

    @staticmethod
    def _on_cdn(url: str) -> bool:
        # blob: and data: sources are never directly fetchable
        try:
            parsed = urlparse(url.lower())
        except ValueError:
            return False
        return parsed.scheme in ("http", "https") and _host_under(parsed.hostname or "", Config.PROXY_DOMAINS)

    def attempt(self, page, content_type: MediaType) -> Optional[ExtractionResult]:
        if content_type == MediaType.IMAGE:
            for img in page.query_all("img"):
                url = img.attribute("src") or ""
                if self._on_cdn(url) and not _contains_any(url.lower(), self.LENIENT_EXCLUDES):
                    logger.info(f"Fallback found image: {url}")
                    return self._result(url, MediaType.IMAGE)
            return None

        for video in page.query_all("video"):
            url = video.attribute("src") or ""
            if self._on_cdn(url) and not _contains_any(url.lower(), Config.IMAGE_SUFFIXES):
                logger.info(f"Fallback found video: {url}")
                return self._result(url, MediaType.VIDEO)
        return None


def default_strategies() -> List[ExtractionStrategy]:
    return [DOMElementStrategy(), SourceMarkupStrategy(), MetaTagStrategy(), FallbackStrategy()]


class ExtractionChain:
    """Runs strategies in priority order and returns the first result."""

    def __init__(self, strategies: Optional[List[ExtractionStrategy]] = None):
        self._strategies: List[ExtractionStrategy] = []
        for strategy in (default_strategies() if strategies is None else strategies):
            self.register(strategy)

    @property
    def strategies(self) -> List[ExtractionStrategy]:
        return list(self._strategies)

    def register(self, strategy: ExtractionStrategy) -> None:
        self._strategies.append(strategy)
        self._strategies.sort(key=lambda s: s.priority)

    def run(self, page, content_type: MediaType) -> Optional[ExtractionResult]:
        for strategy in self._strategies:
            if not strategy.supports(content_type):
                logger.debug(f"Skipping {strategy.name}: not applicable to {content_type.value}")
                continue
            try:
                result = strategy.attempt(page, content_type)
            except Exception as e:
                logger.warning(f"Strategy {strategy.name} failed, skipping: {e}", exc_info=True)
                continue
            if result is not None:
                logger.info(f"{strategy.name} extraction successful: {result.media_type.value} ({result.media_url})")
                return result
            logger.debug(f"Strategy {strategy.name} abstained")
        return None

# ───────────────────────────────── ORCHESTRATOR ──────────────────────────── #

class ThreadsExtractor:
    """
    Extract(raw URL) -> ExtractionResult.

    Holds one shared browser session; every call gets its own isolated page,
    released on every exit path.
    """

    def __init__(
        self,
        session=None,
        chain: Optional[ExtractionChain] = None,
        classifier: Optional[ContentClassifier] = None,
        settle_delay: float = Config.SETTLE_DELAY,
        element_settle_delay: float = Config.ELEMENT_SETTLE_DELAY,
    ):
        self.session = session if session is not None else BrowserSession(**Config.browser_options())
        self.chain = chain or ExtractionChain()
        self.classifier = classifier or ContentClassifier()
        self.settle_delay = settle_delay
        self.element_settle_delay = element_settle_delay

    def start(self) -> "ThreadsExtractor":
        self.session.start()
        return self

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "ThreadsExtractor":
        return self.start()

    def __exit__(self, *exc) -> None:
        self.close()

    def extract(self, raw_url: str) -> ExtractionResult:
        # Input validation happens before any browser work
        post = parse_post_url(raw_url)

        try:
            with self.session.open_page() as page:
                return self._extract_rendered(page, post)
        except ExtractionError:
            raise
        except Exception as e:
            logger.exception(f"Unexpected fault while extracting {post.url}: {e}")
            raise InternalFault("extraction failed due to internal error") from e

    def _extract_rendered(self, page, post: PostReference) -> ExtractionResult:
        logger.info(f"Navigating to: {post.url}")
        try:
            page.navigate(post.url, Config.NAVIGATION_TIMEOUT_MS)
        except NavigationError as e:
            logger.error(f"Navigation error: {e}")
            raise NavigationFailure(f"failed to navigate to Threads post: {e}") from e

        page.wait_for_load(Config.LOAD_TIMEOUT_MS)
        if self.settle_delay:
            time.sleep(self.settle_delay)

        if page.wait_for_elements(Config.VIDEO_WAIT_SELECTOR, Config.ELEMENT_TIMEOUT_MS):
            if self.element_settle_delay:
                time.sleep(self.element_settle_delay)

        return self.extract_from_page(page)

    def extract_from_page(self, page) -> ExtractionResult:
        """Classify an already rendered page and run the strategy chain over it."""
        content_type = self.classifier.classify(page)
        result = self.chain.run(page, content_type)
        if result is None:
            raise NoMediaFound("Threads extraction failed - unable to find media URLs in page source")

        if result.media_type == MediaType.VIDEO and not result.has_metadata:
            result = result.with_metadata(extract_post_metadata(page.html()))
        return result

# ───────────────────────────────── FETCHER ───────────────────────────────── #

class MediaFetcher:
    """Fetches resolved media URLs with the same desktop identity as the browser."""

    MIME_TO_EXT = {
        'image/jpeg': '.jpg',
        'image/jpg': '.jpg',
        'image/png': '.png',
        'image/gif': '.gif',
        'image/webp': '.webp',
        'video/mp4': '.mp4',
        'video/webm': '.webm',
        'video/quicktime': '.mov',
    }

    def __init__(self, session: Optional[requests.Session] = None):
        self.session = session or requests.Session()
        self.session.headers.update({'User-Agent': Config.USER_AGENT})

    def open_stream(self, url: str, timeout: int = Config.FETCH_TIMEOUT) -> requests.Response:
        """
        Open a streaming GET for the byte proxy.

        The caller owns the response and must close it.
        """
        logger.info(f"Proxying download request for: {url}")
        try:
            response = self.session.get(url, stream=True, timeout=timeout, allow_redirects=True)
        except requests.RequestException as e:
            logger.error(f"Failed to fetch media: {e}")
            raise MediaFetchError("Failed to fetch media") from e

        if response.status_code != 200:
            logger.error(f"Media fetch failed with status: {response.status_code}")
            response.close()
            raise MediaNotFound("Media not found")
        return response

    def download(self, url: str, file_path: Path) -> Tuple[Optional[int], Optional[Path]]:
        """
        Download media with streaming (no memory buffering).

        Returns:
            Tuple of (file_size in bytes, final_file_path) or (None, None) on failure.
        """
        logger.info(f"Downloading {url}")

        for attempt in range(Config.MAX_RETRIES):
            try:
                with self.session.get(url, stream=True, timeout=Config.FETCH_TIMEOUT) as response:
                    response.raise_for_status()

                    final_path = file_path.with_suffix(self._detect_extension(response, url))
                    final_path.parent.mkdir(parents=True, exist_ok=True)

                    total_size = 0
                    with open(final_path, 'wb') as f:
                        for chunk in response.iter_content(chunk_size=Config.CHUNK_SIZE):
                            if chunk:
                                f.write(chunk)
                                total_size += len(chunk)

                logger.info(f"Downloaded {final_path} ({total_size} bytes)")
                return total_size, final_path

            except requests.RequestException as e:
                logger.warning(f"Download attempt {attempt + 1}/{Config.MAX_RETRIES} failed: {e}")
                if attempt < Config.MAX_RETRIES - 1:
                    time.sleep(2 ** attempt)

        logger.error(f"Failed to download {url} after {Config.MAX_RETRIES} attempts")
        return None, None

    def _detect_extension(self, response: requests.Response, url: str) -> str:
        """File extension from Content-Type, falling back to the URL path."""
        content_type = response.headers.get('Content-Type', '').lower()
        for mime_type, ext in self.MIME_TO_EXT.items():
            if mime_type in content_type:
                return ext

        path = urlparse(url).path.lower()
        for ext in Config.VIDEO_SUFFIXES + Config.IMAGE_SUFFIXES:
            if path.endswith(ext):
                return ext
        return '.bin'

# ───────────────────────────────── ENTRY POINT ───────────────────────────── #

def read_url_file(path: Path) -> List[str]:
    if not path.exists():
        return []
    return [
        line.strip() for line in path.read_text(encoding="utf-8").splitlines()
        if line.strip() and not line.strip().startswith("#")
    ]


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Extract direct media URLs from Threads posts")
    parser.add_argument("urls", nargs="*", help="post URLs (default: lines of urls.txt)")
    parser.add_argument("--snapshot", type=Path, help="replay a saved HTML snapshot instead of launching a browser")
    parser.add_argument("--download", type=Path, metavar="DIR", help="also download the media into DIR")
    parser.add_argument("--output", type=Path, help="write JSON results to this file")
    args = parser.parse_args(argv)

    setup_logging()

    urls = args.urls or read_url_file(Path("urls.txt"))
    if not urls:
        logger.error("No URLs provided. Pass them as arguments or create urls.txt")
        return 1

    if args.snapshot:
        # Already rendered: nothing to wait for
        extractor = ThreadsExtractor(
            session=SnapshotSession(args.snapshot.read_text(encoding="utf-8")),
            settle_delay=0,
            element_settle_delay=0,
        )
    else:
        extractor = ThreadsExtractor()
    fetcher = MediaFetcher() if args.download else None
    results = []

    with extractor:
        for url in urls:
            try:
                result = extractor.extract(url)
            except ExtractionError as e:
                logger.error(f"Extraction error for URL {url}: {e.message}")
                results.append({"url": url, "error": e.message, "success": False})
                continue

            entry = {"url": url, **result.to_dict()}
            if fetcher:
                post = parse_post_url(url)
                size, path = fetcher.download(result.media_url, args.download / post.post_id)
                if path is not None:
                    entry["localPath"] = str(path)
                    entry["fileSize"] = size
            results.append(entry)

    payload = json.dumps(results, indent=2, ensure_ascii=False)
    if args.output:
        args.output.write_text(payload, encoding="utf-8")
        logger.info(f"Saved results to {args.output}")
    else:
        print(payload)

    return 0 if all(r.get("success") for r in results) else 2


if __name__ == "__main__":
    raise SystemExit(main())
