"""Heuristic parsing of project exports (saved HTML pages, JSON dumps, folders).

Export formats drift, so nothing here is strict: a document that does not look
like what we expect still yields a best-effort project, and a file that cannot
be read is reported in ``ImportResult.errors`` while the rest of the batch
carries on.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from lxml import etree, html as lxml_html

from investcalc.needs_matrix import parse_number
from investcalc.schemas import (
    CellValue,
    ImportResult,
    NeedsMatrix,
    ProjectAsset,
    ProjectTask,
    VianeoProject,
)

log = logging.getLogger(__name__)

DEFAULT_SOURCE = "saved_resource.html"
FALLBACK_TITLE = "Vianeo Project"
_MAX_DESCRIPTION = 500
_MAX_TEXT = 5_000
_MAX_DIAGNOSTICS = 50

_DIAGNOSTIC_RE = re.compile(
    r"risk|milestone|strategy|regulat|team|market|geo|timeline|roadmap|deployment|ecosystem|network",
    re.IGNORECASE,
)
_PERSONA_HEADER_RE = re.compile(r"^persona$|user|segment|role")
_MARKUP_SNIFF_RE = re.compile(r"<html|<head|<body", re.IGNORECASE)

_MARKUP_NAME_RE = re.compile(r"saved_resource|\.html?$", re.IGNORECASE)
_JSON_NAME_RE = re.compile(r"\.json$|global[-_]?data", re.IGNORECASE)
_TEXT_NAME_RE = re.compile(r"\.(txt|csv|md)$", re.IGNORECASE)
_IMAGE_NAME_RE = re.compile(r"\.(png|jpe?g|webp|svg)$", re.IGNORECASE)

# Processing order for a file collection
KINDS = ("markup", "json", "text", "image")


def _class_test(name: str) -> str:
    return f"contains(concat(' ', normalize-space(@class), ' '), ' {name} ')"


_TAG_XPATH = f".//*[@data-tag or {_class_test('tag')} or {_class_test('badge')}]"
_CELL_XPATH = "./*[self::th or self::td]"


# ---------------------------------------------------------------------------
# lxml helpers
# ---------------------------------------------------------------------------


def _text(node: object | None) -> str:
    if node is None:
        return ""
    return node.text_content().strip()  # type: ignore[attr-defined]


def _first(node: lxml_html.HtmlElement, xpath: str) -> lxml_html.HtmlElement | None:
    found = node.xpath(xpath)
    return found[0] if found else None


def _next_element(node: lxml_html.HtmlElement) -> lxml_html.HtmlElement | None:
    """Next sibling that is an element (comments and PIs are skipped)."""
    sib = node.getnext()
    while sib is not None and not isinstance(sib.tag, str):
        sib = sib.getnext()
    return sib


def _parse_tree(html: str) -> lxml_html.HtmlElement:
    try:
        return lxml_html.document_fromstring(html)
    except ValueError:
        # str input carrying an XML encoding declaration
        return lxml_html.document_fromstring(html.encode("utf-8"))
    except (etree.ParserError, etree.XMLSyntaxError):
        log.debug("Unparseable markup, treating as an empty document")
        return lxml_html.document_fromstring("<html><body></body></html>")


# ---------------------------------------------------------------------------
# Needs matrix
# ---------------------------------------------------------------------------


def _cell_value(text: str) -> CellValue:
    num = parse_number(text)
    if num is None:
        return text
    return int(num) if num.is_integer() else num


def extract_needs_matrix(root: lxml_html.HtmlElement) -> NeedsMatrix | None:
    """Pick the biggest persona x need looking table under *root*.

    Only tables with at least three rows and three columns qualify; the one
    with the largest rows x columns product wins, earlier tables on ties.
    """
    best: list[lxml_html.HtmlElement] | None = None
    best_score = 0
    for table in root.xpath(".//table"):
        rows = table.xpath(".//tr")
        if len(rows) < 3:
            continue
        cols = max(len(r.xpath(_CELL_XPATH)) for r in rows)
        score = len(rows) * cols
        if cols >= 3 and score > best_score:
            best, best_score = rows, score
    if not best:
        return None

    headers = [_text(c) for c in best[0].xpath(_CELL_XPATH)]
    persona_col = 0
    for i, header in enumerate(headers):
        if _PERSONA_HEADER_RE.search(header.lower()):
            persona_col = i
            break

    needs: list[str] = []
    for i, header in enumerate(headers):
        if i != persona_col:
            needs.append(header or f"Need {len(needs) + 1}")

    personas: list[str] = []
    values: list[list[CellValue]] = []
    for row in best[1:]:
        cells = row.xpath(_CELL_XPATH)
        if not cells:
            continue
        persona = _text(cells[persona_col]) if persona_col < len(cells) else ""
        if not persona:
            continue
        personas.append(persona)
        values.append([_cell_value(_text(c)) for i, c in enumerate(cells) if i != persona_col])

    # Header row carried no usable need labels: name columns after the first row.
    if values and not any(n and n.lower() != "persona" for n in needs):
        for i in range(len(values[0])):
            if i >= len(needs):
                needs.append(f"Need {i + 1}")
            elif not needs[i]:
                needs[i] = f"Need {i + 1}"

    if not needs or not personas:
        return None
    return NeedsMatrix(personas=personas, needs=needs, values=values)


# ---------------------------------------------------------------------------
# Single documents
# ---------------------------------------------------------------------------


def _container_project(
    el: lxml_html.HtmlElement, idx: int, source: str,
) -> VianeoProject:
    pid = (el.get("data-project-id") or "").strip() or f"p{idx}"
    title = (
        _text(_first(el, ".//*[@data-project-title]"))
        or _text(_first(el, "(.//h1 | .//h2 | .//h3)[1]"))
        or f"Project {idx + 1}"
    )
    description = _text(_first(el, ".//*[@data-project-description]")) or None
    tags = [t for t in (_text(n) for n in el.xpath(_TAG_XPATH)) if t]

    tasks: list[ProjectTask] = []
    for node in el.xpath(".//*[@data-task-id]"):
        task_title = _text(_first(node, ".//*[@data-task-title]")) or _text(node)
        if task_title:
            tasks.append(ProjectTask(
                id=node.get("data-task-id") or "",
                title=task_title,
                status=node.get("data-task-status") or None,
            ))

    project = VianeoProject(
        id=pid, title=title, description=description, tags=tags, tasks=tasks,
        source_files=[source],
    )
    for label in el.xpath(".//label"):
        key = _text(label)
        if not key:
            continue
        value = _text(_next_element(label))
        if value:
            project.add_field(key, value, "label")
    project.needs_matrix = extract_needs_matrix(el)
    return project


def _document_project(doc: lxml_html.HtmlElement, source: str) -> VianeoProject:
    title = (
        _text(_first(doc, "//title"))
        or _text(_first(doc, "(//h1 | //h2)[1]"))
        or FALLBACK_TITLE
    )
    project = VianeoProject(id="project-1", title=title, source_files=[source])

    for dt in doc.xpath("//dl//dt"):
        key = _text(dt)
        value = _text(_next_element(dt))
        if key and value:
            project.add_field(key, value, "dl")
    for row in doc.xpath("//table//tr"):
        cells = [_text(c) for c in row.xpath(_CELL_XPATH)]
        if len(cells) == 2 and cells[0] and cells[1]:
            project.add_field(cells[0], cells[1], "table")

    meta = doc.xpath("//meta[@name='description']/@content")
    description = (meta[0].strip() if meta else "") or _text(_first(doc, "//p"))
    project.description = description[:_MAX_DESCRIPTION] or None

    body = _first(doc, "//body")
    project.needs_matrix = extract_needs_matrix(body if body is not None else doc)
    return project


def parse_html_document(html: str, source: str = DEFAULT_SOURCE) -> list[VianeoProject]:
    """Projects found in one saved HTML export.

    Elements carrying ``data-project-id`` each become a project.  Without any,
    the whole page is read as a single project from its definition lists and
    two-column tables.
    """
    doc = _parse_tree(html)
    containers = doc.xpath("//*[@data-project-id]")
    if containers:
        return [_container_project(el, idx, source) for idx, el in enumerate(containers)]
    return [_document_project(doc, source)]


def parse_json_document(text: str, source: str) -> list[VianeoProject]:
    """One project per object in a top-level JSON array.

    Raises ``json.JSONDecodeError`` for invalid JSON; any other top-level
    shape yields no projects.
    """
    data = json.loads(text)
    if not isinstance(data, list):
        log.debug("%s: top-level JSON is %s, not an array", source, type(data).__name__)
        return []

    projects: list[VianeoProject] = []
    for idx, item in enumerate(data):
        if not isinstance(item, dict):
            continue
        pid = item.get("id") or item.get("uuid") or f"{source}-{idx}"
        title = item.get("title") or item.get("name") or f"Item {idx + 1}"
        description = item.get("description")
        project = VianeoProject(
            id=str(pid),
            title=str(title),
            description=str(description) if description else None,
            source_files=[source],
        )
        for key, value in item.items():
            if isinstance(value, bool):
                project.add_field(key, "true" if value else "false", "json")
            elif isinstance(value, (str, int, float)):
                project.add_field(key, str(value), "json")
        projects.append(project)
    return projects


def extract_diagnostics(text: str) -> list[str]:
    """Non-empty lines mentioning risk, strategy, milestones and the like."""
    lines = (line.strip() for line in text.splitlines())
    return [line for line in lines if line and _DIAGNOSTIC_RE.search(line)][:_MAX_DIAGNOSTICS]


# ---------------------------------------------------------------------------
# File collections
# ---------------------------------------------------------------------------


@dataclass
class SourceFile:
    """A file from an export folder, either already in memory or on disk.

    ``path`` is the folder-relative path used for type detection and
    provenance; ``name`` is its last component.
    """

    path: str
    data: bytes | None = None
    location: Path | None = None

    @property
    def name(self) -> str:
        return PurePosixPath(self.path).name

    @property
    def extension(self) -> str:
        suffix = PurePosixPath(self.path).suffix
        return suffix[1:].lower() if suffix else "txt"

    async def read_text(self) -> str:
        if self.data is None:
            if self.location is None:
                raise FileNotFoundError(self.path)
            self.data = await asyncio.to_thread(self.location.read_bytes)
        return self.data.decode("utf-8", errors="replace")

    @classmethod
    def from_path(cls, location: Path, root: Path | None = None) -> SourceFile:
        rel = location.relative_to(root) if root else Path(location.name)
        return cls(path=rel.as_posix(), location=location)


def collect_files(root: Path) -> list[SourceFile]:
    """Every regular file under *root* (or *root* itself), in sorted order."""
    if root.is_file():
        return [SourceFile.from_path(root)]
    return [SourceFile.from_path(p, root) for p in sorted(root.rglob("*")) if p.is_file()]


def detect_kind(path: str, content: str | None = None) -> str | None:
    """``markup``, ``json``, ``text``, ``image`` or None for files we ignore.

    Content that looks like an HTML page is markup whatever the name says,
    unless the name marks it as an image.
    """
    if _IMAGE_NAME_RE.search(path):
        return "image"
    if _MARKUP_NAME_RE.search(path) or (content and _MARKUP_SNIFF_RE.search(content)):
        return "markup"
    if _JSON_NAME_RE.search(path):
        return "json"
    if _TEXT_NAME_RE.search(path):
        return "text"
    return None


def _merge_text(projects: list[VianeoProject], f: SourceFile, text: str) -> None:
    text = text[:_MAX_TEXT]
    diagnostics = extract_diagnostics(text)
    if not projects:
        project = VianeoProject(
            id="project-text-1",
            title=f"{FALLBACK_TITLE} (text import)",
            source_files=[f.path],
            diagnostics=diagnostics,
        )
        project.add_field(f.path, text, "text")
        project.count_file_type(f.extension)
        projects.append(project)
        return
    project = projects[0]
    project.add_field(f.path, text, "text")
    project.add_source(f.path)
    project.count_file_type(f.extension)
    project.diagnostics = list(dict.fromkeys([*project.diagnostics, *diagnostics]))


def _attach_images(projects: list[VianeoProject], images: Sequence[SourceFile]) -> None:
    if not images:
        return
    if not projects:
        projects.append(VianeoProject(id="project-assets-1", title=FALLBACK_TITLE))
    project = projects[0]
    for img in images:
        project.assets.append(ProjectAsset(path=img.path, name=img.name))
        project.count_file_type("image")
        project.add_source(img.path)


def dedupe_projects(projects: Iterable[VianeoProject]) -> list[VianeoProject]:
    """Drop later projects whose id was already seen."""
    by_id: dict[str, VianeoProject] = {}
    for p in projects:
        by_id.setdefault(p.id, p)
    return list(by_id.values())


async def parse_file_collection(files: Sequence[SourceFile]) -> ImportResult:
    """Parse an export folder into projects.

    Files are read one after another.  Markup is handled first, then JSON,
    text and finally images, keeping input order within each kind.  A file
    that fails is logged, recorded in ``errors`` and skipped.
    """
    errors: list[str] = []
    skipped = 0
    buckets: dict[str, list[tuple[SourceFile, str]]] = {k: [] for k in KINDS}

    for f in files:
        if detect_kind(f.path) == "image":
            buckets["image"].append((f, ""))
            continue
        try:
            text = await f.read_text()
        except OSError as exc:
            log.warning("Failed to read %s: %s", f.path, exc)
            errors.append(f"{f.path}: {exc}")
            continue
        kind = detect_kind(f.path, text)
        if kind is None:
            log.debug("Skipping %s: unrecognised file type", f.path)
            skipped += 1
            continue
        buckets[kind].append((f, text))

    projects: list[VianeoProject] = []

    for f, text in buckets["markup"]:
        try:
            parsed = parse_html_document(text, source=f.name)
        except Exception as exc:
            log.warning("Failed to parse HTML file %s: %s", f.path, exc)
            errors.append(f"{f.path}: {exc}")
            continue
        for p in parsed:
            p.add_source(f.name)
            p.count_file_type("html")
            if p.needs_matrix and not p.needs_matrix.source:
                p.needs_matrix.source = f.path
            projects.append(p)

    for f, text in buckets["json"]:
        try:
            projects.extend(parse_json_document(text, source=f.name))
        except Exception as exc:
            log.warning("Failed to parse JSON file %s: %s", f.path, exc)
            errors.append(f"{f.path}: {exc}")

    for f, text in buckets["text"]:
        try:
            _merge_text(projects, f, text)
        except Exception as exc:
            log.warning("Failed to read text file %s: %s", f.path, exc)
            errors.append(f"{f.path}: {exc}")

    _attach_images(projects, [f for f, _ in buckets["image"]])

    result = ImportResult(
        projects=dedupe_projects(projects),
        errors=errors,
        files_seen=len(files),
        files_skipped=skipped,
    )
    log.info(
        "Parsed %d files into %d projects (%d skipped, %d errors)",
        result.files_seen, len(result.projects), skipped, len(errors),
    )
    return result
