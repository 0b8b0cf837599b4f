"""
Shared fixtures: fake clock, in-memory persisted store, fake upstream.
"""
import threading
import time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.cache import PersistentCacheStore
from app.db import init_db
from app.timetable.client import TimetableClient, UpstreamError
from config.settings import settings

BASE_URL = "https://timetable.tusur.ru"


class FakeClock:
    """Manually advanced wall clock (epoch seconds)."""

    def __init__(self, start: float = 1_757_000_000.0):
        self.now = start
        self._lock = threading.Lock()

    def __call__(self) -> float:
        with self._lock:
            return self.now

    def advance(self, seconds: float) -> None:
        with self._lock:
            self.now += seconds


class FakeTimetableClient(TimetableClient):
    """Serves canned pages instead of hitting the network."""

    def __init__(self, pages=None, documents=None):
        super().__init__(base_url=BASE_URL, retry_attempts=1)
        self.pages = dict(pages or {})
        self.documents = dict(documents or {})
        self.calls = []
        self.down = False
        self._calls_lock = threading.Lock()

    def _record(self, url, params):
        with self._calls_lock:
            self.calls.append((url, params))
        if self.down:
            raise UpstreamError(f"Upstream returned 503 for {url}", status=503)

    def get_text(self, url, params=None):
        self._record(url, params)
        if url not in self.pages:
            raise UpstreamError(f"Upstream returned 404 for {url}", status=404)
        return self.pages[url]

    def get_json(self, url, params=None):
        self._record(url, params)
        if url not in self.documents:
            raise UpstreamError(f"Upstream returned 404 for {url}", status=404)
        return self.documents[url]

    def calls_to(self, url):
        with self._calls_lock:
            return [call for call in self.calls if call[0] == url]


def wait_for(predicate, timeout: float = 2.0) -> bool:
    """Poll until predicate() is true or the timeout elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return PersistentCacheStore(session_factory)


@pytest.fixture
def photos_url():
    return settings.faculty_photos_url


# =============================================================================
# Upstream pages
# =============================================================================

FACULTIES_HTML = """
<html><head>
<link rel="stylesheet" media="all" href="/assets/application-abc123.css" />
</head><body>
<h1>Список факультетов</h1>
<ul>
  <li><a href="/faculties/fsu">Факультет систем управления</a></li>
  <li><a href="/faculties/rtf">Радиотехнический факультет</a></li>
  <li><a href="/faculties/gf">Гуманитарный факультет &amp; ИСР</a></li>
</ul>
</body></html>
"""

FACULTIES_CSS = """
.logo-fsu { background: url(/assets/logo_fsu_bw-aaaa.svg); }
.logo-fsu-big { background: url(/assets/faculties_logo/logo_fsu-0a1b.svg); }
.logo-rtf { background: url(/assets/logo_rtf-ffee.png); }
"""

PHOTOS_HTML = """
<div class="faculty"><img src="/assets/faculties/fsu-abc123.jpg"></div>
<div class="faculty"><img src="/assets/faculties/fsu-def456.jpg"></div>
"""

COURSES_HTML = """
<div class="courses">
<h2>1 курс</h2>
<ul>
  <li><a href="/faculties/fsu/groups/440-1">440-1</a></li>
  <li><a href="/faculties/fsu/groups/440-2">440-2</a></li>
</ul>
<h2>2 курс</h2>
<ul><li><a href="/faculties/fsu/groups/430-1">430-1</a></li></ul>
<h2>5 курс</h2>
</div>
"""

SCHEDULE_HTML = """
<table class="table table-lessons even hidden-xs hidden-sm">
<tr>
  <th class="time"><span>08:50</span> <span>10:25</span></th>
  <td class="lesson_cell day_1">
    <div class="training lecture" data-lesson-id="101">
      <span class="discipline"><abbr title="Математический анализ">Мат. ан.</abbr></span>
      <span class="kind">Лекция</span>
      <span class="auditoriums"><a href="/auditoriums/fet-301">ФЭТ 301</a></span>
      <span class="group"><a href="/teachers/ivanov">Иванов И. И.</a></span>
      <i class="note" title="Онлайн &amp; очно"></i>
    </div>
  </td>
  <td class="lesson_cell day_3">
    <div class="training"><span class="discipline">Физика</span><span class="kind">Лабораторная работа</span><span class="auditoriums">—</span></div>
  </td>
  <td class="lesson_cell day_6">
    <div class="training"><span class="special">Праздничный день</span></div>
  </td>
</tr>
<tr>
  <th class="time"><span>10:40</span> <span>12:15</span></th>
  <td class="lesson_cell day_1">
    <div class="training"><span class="discipline">История</span><span class="kind">Практика</span><span class="hidden">202</span></div>
  </td>
</tr>
</table>
<div id="js-lesson-info-101" class="modal" data-course-links-url="/courses/55/links">
  <p><strong>Группы:</strong> <a href="/faculties/fsu/groups/440-1">440-1</a></p>
  <p><strong>Совместно с группами:</strong> <a href="/faculties/fsu/groups/440-2">440-2</a></p>
</noindex>
"""

RESOURCE_LINKS = [
    {"url": "/files/lecture-1.pdf", "anchor": "Конспект <b>лекции</b>"},
    {"url": "/files/lecture-1.pdf", "anchor": "Конспект <b>лекции</b>"},
    {"anchor": "missing url"},
]
