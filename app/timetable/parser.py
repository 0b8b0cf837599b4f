"""
HTML parsing for the upstream timetable site.

Pure functions: upstream markup in, schemas out. The site renders plain
server-side HTML, so targeted regular expressions are enough.
"""
import html as html_lib
import re
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin

from app.schemas import (
    Course, DaySchedule, Faculty, Group, Lesson, ResourceLink, SpecialDay, WeekSchedule,
)
from app.timetable.weeks import format_lesson_date, week_type as fallback_week_type

DEFAULT_BASE_URL = "https://timetable.tusur.ru"
DEFAULT_TUSUR_URL = "https://tusur.ru"

DAY_NAMES = [
    "Понедельник",
    "Вторник",
    "Среда",
    "Четверг",
    "Пятница",
    "Суббота",
    "Воскресенье",
]

NOTE_TOOLTIP_ATTRS = ("data-original-title", "title", "data-title", "data-content")

_TAG_RE = re.compile(r"<[^>]+>")
_SPACE_RE = re.compile(r"\s+")
_LINK_RE = re.compile(r"""<a[^>]*href=['"]([^'"]+)['"][^>]*>([\s\S]*?)</a>""", re.I)
_CLASS_TAG_RE = re.compile(r"""<[^>]+class=['"][^'"]*['"][^>]*>""", re.I)
_MODAL_RE = re.compile(r"""<div id="js-lesson-info-(\d+)"[\s\S]*?</noindex>""", re.I)
_TABLE_RES = (
    re.compile(
        r"""<table[^>]*class=(["'])(?=[^"']*table-lessons)(?=[^"']*hidden-xs)(?=[^"']*hidden-sm)[^"']*\1[^>]*>[\s\S]*?</table>""",
        re.I,
    ),
    re.compile(r"""<table[^>]*class=(["'])(?=[^"']*table-lessons)[^"']*\1[^>]*>[\s\S]*?</table>""", re.I),
)
_ROW_RE = re.compile(r"<tr[^>]*>([\s\S]*?)</tr>", re.I)
_TIME_RE = re.compile(
    r"""<th[^>]*class=['"]time['"][^>]*>[\s\S]*?<span>\s*(\d{1,2}:\d{2})\s*</span>[\s\S]*?<span>\s*(\d{1,2}:\d{2})\s*</span>""",
    re.I,
)
_CELL_RE = re.compile(r"""<td[^>]*class=['"][^'"]*lesson_cell[^'"]*day_(\d+)[^'"]*['"][^>]*>([\s\S]*?)</td>""", re.I)
_TRAINING_RE = re.compile(r"""<div[^>]*class=['"][^'"]*training[^'"]*['"][^>]*>([\s\S]*?)</div>""", re.I)
_DISCIPLINE_RE = re.compile(r"""<span[^>]*class=['"][^'"]*discipline[^'"]*['"][^>]*>([\s\S]*?)</span>""", re.I)
_ABBR_RE = re.compile(r"""<abbr[^>]*(?:title|data-original-title)=['"]([^'"]+)['"][^>]*>""", re.I)
_KIND_RE = re.compile(r"""<span[^>]*class=['"]kind['"][^>]*>([\s\S]*?)</span>""", re.I)
_ROOM_RE = re.compile(r"""<span[^>]*class=['"]auditoriums?['"][^>]*>([\s\S]*?)</span>""", re.I)
_TEACHER_RE = re.compile(r"""<span[^>]*class=['"]group['"][^>]*>([\s\S]*?)</span>""", re.I)
_LESSON_ID_RES = (
    re.compile(r"""data-lesson-id=['"](\d+)['"]""", re.I),
    re.compile(r"""<span[^>]*class=['"]hidden['"][^>]*>(\d+)</span>""", re.I),
)
_STYLESHEET_RE = re.compile(r"""<link[^>]+href=['"]([^'"]*application-[^'"]+\.css)['"][^>]*>""", re.I)
_LOGO_RE = re.compile(r"/assets/(?:faculties_logo/)?logo_([a-z0-9]+)(?:_bw)?-[a-f0-9]+\.(?:svg|png|jpg)", re.I)
_PHOTO_RE = re.compile(r"/assets/faculties/([a-z0-9]+)-[a-f0-9]+\.(?:jpg|jpeg|png)", re.I)
_FACULTY_LIST_RE = re.compile(r"<h1[^>]*>Список факультетов</h1>([\s\S]*?)</ul>", re.I)
_FACULTY_LINK_RE = re.compile(r"""<a\s+href="/faculties/([^"]+)"[^>]*>([^<]+)</a>""", re.I)
_GROUP_LINK_RE = re.compile(r"""<a\s+href="/faculties/[^/]+/groups/([^"]+)"[^>]*>([^<]+)</a>""", re.I)
_COURSE_RE = re.compile(r"<h2[^>]*>(\d+)\s*курс</h2>([\s\S]*?)(?=<h2|</div>|$)", re.I)


@dataclass
class LessonModal:
    """Extra lesson info rendered in the per-lesson popup."""
    course_links_url: Optional[str] = None
    group_links: List[ResourceLink] = field(default_factory=list)
    joint_group_links: List[ResourceLink] = field(default_factory=list)


# =============================================================================
# Text helpers
# =============================================================================

def strip_html(fragment: str) -> str:
    """Drop tags, collapse whitespace and decode entities."""
    text = _SPACE_RE.sub(" ", _TAG_RE.sub(" ", fragment)).strip()
    return html_lib.unescape(text).replace("\xa0", " ").strip()


def _normalize(text: str) -> str:
    return text.lower().replace("ё", "е")


def extract_links(fragment: Optional[str], base_url: str = DEFAULT_BASE_URL) -> List[ResourceLink]:
    """Collect <a> links from a fragment, deduplicated by label and URL."""
    if not fragment:
        return []
    links = []
    seen = set()
    for href, body in _LINK_RE.findall(fragment):
        label = strip_html(body)
        if not label:
            continue
        url = urljoin(base_url, html_lib.unescape(href))
        if (label, url) in seen:
            continue
        seen.add((label, url))
        links.append(ResourceLink(label=label, url=url))
    return links


def _attribute(tag: str, name: str) -> Optional[str]:
    match = re.search(rf"""{name}=['"]([^'"]*)['"]""", tag, re.I)
    return match.group(1) if match else None


def extract_lesson_notes(fragment: str) -> List[str]:
    """Tooltip texts of elements carrying the `note` class."""
    notes: List[str] = []
    for tag in _CLASS_TAG_RE.findall(fragment):
        classes = (_attribute(tag, "class") or "").split()
        if "note" not in classes:
            continue
        raw = next(
            (value for value in (_attribute(tag, attr) for attr in NOTE_TOOLTIP_ATTRS)
             if value and value.strip()),
            None,
        )
        if not raw:
            continue
        cleaned = strip_html(raw)
        if cleaned and cleaned not in notes:
            notes.append(cleaned)
    return notes


def _paragraph_content(fragment: str, label: str) -> Optional[str]:
    pattern = rf"<strong>\s*{re.escape(label)}:\s*</strong>([\s\S]*?)</p>"
    match = re.search(pattern, fragment, re.I)
    return match.group(1) if match else None


# =============================================================================
# Lesson details
# =============================================================================

def parse_lesson_modals(page: str, base_url: str = DEFAULT_BASE_URL) -> Dict[str, LessonModal]:
    modals: Dict[str, LessonModal] = {}
    for match in _MODAL_RE.finditer(page):
        lesson_id = match.group(1)
        if lesson_id in modals:
            continue
        modal_html = match.group(0)
        course_links = re.search(r"""data-course-links-url=['"]([^'"]+)['"]""", modal_html, re.I)
        groups_html = (
            _paragraph_content(modal_html, "Группы")
            or _paragraph_content(modal_html, "Группа")
        )
        modals[lesson_id] = LessonModal(
            course_links_url=urljoin(base_url, course_links.group(1)) if course_links else None,
            group_links=extract_links(groups_html, base_url),
            joint_group_links=extract_links(
                _paragraph_content(modal_html, "Совместно с группами"), base_url
            ),
        )
    return modals


def parse_resource_links(payload: Any, base_url: str = DEFAULT_BASE_URL) -> List[ResourceLink]:
    """
    Course resource links from the upstream JSON endpoint.

    Expects a list of {"url": ..., "anchor": ...}; anything else yields [].
    """
    if not isinstance(payload, list):
        return []
    links = []
    seen = set()
    for item in payload:
        if not isinstance(item, dict):
            continue
        url, anchor = item.get("url"), item.get("anchor")
        if not isinstance(url, str) or not isinstance(anchor, str):
            continue
        label = strip_html(anchor)
        if not label:
            continue
        resolved = urljoin(base_url, url)
        if (label, resolved) in seen:
            continue
        seen.add((label, resolved))
        links.append(ResourceLink(label=label, url=resolved))
    return links


def map_lesson_type(kind: str) -> str:
    normalized = _normalize(kind)

    if "лек" in normalized:
        return "lecture"
    if "практ" in normalized or "сем" in normalized:
        return "practice"
    if "лаб" in normalized:
        return "lab"
    if "проект" in normalized:
        return "courseProject"
    if "курсов" in normalized:
        return "coursework"
    if "зач" in normalized and "оцен" in normalized:
        return "creditWithGrade"
    if "зач" in normalized:
        return "credit"
    if "экзам" in normalized:
        return "exam"
    if "самост" in normalized or "срс" in normalized:
        return "selfStudy"
    if "конс" in normalized:
        return "consultation"
    return "lecture"


def parse_special_day(training_html: str) -> Optional[SpecialDay]:
    raw = strip_html(training_html)
    text = _normalize(raw)

    if "праздничн" in text:
        return SpecialDay(type="holiday", name="Праздничный день")
    if "выходн" in text:
        return SpecialDay(type="holiday", name="Выходной день")
    if "каникул" in text:
        return SpecialDay(type="vacation", name="Каникулы")
    if "практик" in text:
        return SpecialDay(type="practice", name=raw or "Практика")
    return None


def _joined_labels(links: List[ResourceLink], fallback: str) -> str:
    if links:
        return ", ".join(link.label for link in links)
    return fallback or "—"


def _parse_lesson(
    training_html: str,
    day_index: int,
    time_start: str,
    time_end: str,
    lesson_date: str,
    modals: Dict[str, LessonModal],
    base_url: str,
) -> Optional[Lesson]:
    discipline = _DISCIPLINE_RE.search(training_html)
    abbr = _ABBR_RE.search(training_html)
    subject = html_lib.unescape(abbr.group(1)) if abbr else strip_html(discipline.group(1))
    if not subject:
        return None

    kind = _KIND_RE.search(training_html)
    room_html = _ROOM_RE.search(training_html)
    room_links = extract_links(room_html.group(1), base_url) if room_html else []
    teacher_html = _TEACHER_RE.search(training_html)
    instructor_links = extract_links(teacher_html.group(1), base_url) if teacher_html else []
    notes = extract_lesson_notes(training_html)

    lesson_id = None
    for pattern in _LESSON_ID_RES:
        id_match = pattern.search(training_html)
        if id_match:
            lesson_id = id_match.group(1)
            break
    lesson_id = lesson_id or f"{day_index}-{time_start}-{subject}"

    modal = modals.get(lesson_id)
    joint_group_links = modal.joint_group_links if modal and modal.joint_group_links else None

    return Lesson(
        id=lesson_id,
        time=time_start,
        time_end=time_end,
        subject=subject,
        type=map_lesson_type(strip_html(kind.group(1)) if kind else ""),
        room=_joined_labels(room_links, strip_html(room_html.group(1)) if room_html else ""),
        room_links=room_links or None,
        instructor=_joined_labels(
            instructor_links, strip_html(teacher_html.group(1)) if teacher_html else ""
        ),
        instructor_links=instructor_links or None,
        date=lesson_date,
        group_links=modal.group_links if modal and modal.group_links else None,
        joint_group_links=joint_group_links,
        joint_groups=[link.label for link in joint_group_links] if joint_group_links else None,
        notes=notes or None,
    )


def parse_week_schedule(
    page: str,
    week_start: date,
    modals: Optional[Dict[str, LessonModal]] = None,
    base_url: str = DEFAULT_BASE_URL,
) -> WeekSchedule:
    """
    Parse one group's week from the timetable page.

    Args:
        page: Timetable page HTML
        week_start: Monday of the requested week
        modals: Lesson popups from parse_lesson_modals
        base_url: Base for relative links

    Returns:
        WeekSchedule with all seven days (empty days included)
    """
    modals = modals or {}
    days = [
        DaySchedule(day_name=name, day_index=index, lessons=[])
        for index, name in enumerate(DAY_NAMES)
    ]

    table = None
    for pattern in _TABLE_RES:
        table = pattern.search(page)
        if table:
            break

    default_week_type = fallback_week_type(week_start)
    if table is None:
        return WeekSchedule(week_type=default_week_type, days=days)

    table_html = table.group(0)
    class_match = re.search(r"""<table[^>]*class=(["'])([^"']*)\1""", table_html, re.I)
    class_name = class_match.group(2) if class_match else ""
    if "even" in class_name:
        parsed_week_type = "even"
    elif "odd" in class_name:
        parsed_week_type = "odd"
    else:
        parsed_week_type = default_week_type

    day_dates = [format_lesson_date(week_start + timedelta(days=i)) for i in range(len(days))]

    for row in _ROW_RE.finditer(table_html):
        row_html = row.group(1)
        time_match = _TIME_RE.search(row_html)
        time_start, time_end = time_match.groups() if time_match else (None, None)

        for cell in _CELL_RE.finditer(row_html):
            day_index = int(cell.group(1)) - 1
            if not 0 <= day_index < len(days):
                continue
            day = days[day_index]

            for training in _TRAINING_RE.finditer(cell.group(2)):
                training_html = training.group(0)
                if not _DISCIPLINE_RE.search(training_html):
                    special = parse_special_day(training_html)
                    if special and day.special_day is None:
                        day.special_day = special
                    continue

                if not time_start or not time_end:
                    continue

                lesson = _parse_lesson(
                    training_html, day_index, time_start, time_end,
                    day_dates[day_index], modals, base_url,
                )
                if lesson is not None:
                    day.lessons.append(lesson)

    return WeekSchedule(week_type=parsed_week_type, days=days)


# =============================================================================
# Faculties and courses
# =============================================================================

def extract_stylesheet_url(page: str, base_url: str = DEFAULT_BASE_URL) -> Optional[str]:
    match = _STYLESHEET_RE.search(page)
    return urljoin(base_url, match.group(1)) if match else None


def parse_faculty_logo_urls(css: str, base_url: str = DEFAULT_BASE_URL) -> Dict[str, str]:
    """
    Faculty slug -> logo URL from the site stylesheet.

    Prefers faculties_logo/ assets, then colour logos, then _bw variants.
    """
    best: Dict[str, tuple] = {}
    for match in _LOGO_RE.finditer(css):
        slug, path = match.group(1), match.group(0)
        if "faculties_logo/" in path:
            priority = 2
        elif "_bw-" in path:
            priority = 0
        else:
            priority = 1
        current = best.get(slug)
        if current is None or priority > current[1]:
            best[slug] = (urljoin(base_url, path), priority)
    return {slug: url for slug, (url, _) in best.items()}


def parse_faculty_photos(page: str, base_url: str = DEFAULT_TUSUR_URL) -> Dict[str, str]:
    photos: Dict[str, str] = {}
    for match in _PHOTO_RE.finditer(page):
        photos.setdefault(match.group(1), urljoin(base_url, match.group(0)))
    return photos


def parse_faculties(
    page: str,
    logos: Optional[Dict[str, str]] = None,
    photos: Optional[Dict[str, str]] = None,
) -> List[Faculty]:
    logos = logos or {}
    photos = photos or {}
    list_match = _FACULTY_LIST_RE.search(page)
    if not list_match:
        return []

    faculties = []
    for slug, name in _FACULTY_LINK_RE.findall(list_match.group(1)):
        faculties.append(Faculty(
            slug=slug,
            name=html_lib.unescape(name.strip()),
            image_url=photos.get(slug) or logos.get(slug),
        ))
    return faculties


def parse_groups(fragment: str) -> List[Group]:
    return [
        Group(slug=slug, name=html_lib.unescape(name.strip()))
        for slug, name in _GROUP_LINK_RE.findall(fragment)
    ]


def parse_faculty_courses(page: str) -> List[Course]:
    """Courses with their groups; courses without groups are skipped."""
    courses = []
    for match in _COURSE_RE.finditer(page):
        number = int(match.group(1))
        groups = parse_groups(match.group(2))
        if groups:
            courses.append(Course(number=number, name=f"{number} курс", groups=groups))
    return courses
