import os
import time
import logging
from dataclasses import dataclass, field
from typing import Dict, List
from concurrent.futures import ThreadPoolExecutor, as_completed

from .cache import BuildCache
from .errors import BuildAborted
from .models import CacheEntry, PageState

# Below this many stale pages a thread pool costs more than it saves.
PARALLEL_THRESHOLD = 12


@dataclass
class BuildPlan:
    stale: List[str] = field(default_factory=list)
    reasons: Dict[str, str] = field(default_factory=dict)
    states: Dict[str, PageState] = field(default_factory=dict)
    evicted: List[str] = field(default_factory=list)

    @property
    def fresh(self):
        return [page_id for page_id, state in self.states.items()
                if page_id not in self.reasons and state is not PageState.EVICTED]


@dataclass
class BuildOutcome:
    outputs: Dict[str, str]
    cache: BuildCache
    plan: BuildPlan

    @property
    def rendered(self):
        return sorted(self.outputs)


def plan_build(pages, graph, previous_cache, full=False, output_exists=None):
    """Decide which pages must be re-rendered.

    A page is stale when it has no cache entry, its content hash, dependency
    set or link fingerprint changed, or its output file is gone. Staleness
    then spreads to every page holding a link to a stale or evicted page,
    using both the current backlink index and the previous build's
    dependencies, until no new page is marked.
    """
    previous_cache = previous_cache or BuildCache.empty()
    pages_by_id = {page.id: page for page in pages}
    ordered = sorted(pages, key=lambda page: page.discovery_index)
    plan = BuildPlan()
    plan.evicted = sorted(page_id for page_id in previous_cache if page_id not in pages_by_id)

    for page in ordered:
        entry = previous_cache.get(page.id)
        if full:
            reason = 'full rebuild'
        elif entry is None:
            reason = 'new page'
        elif entry.content_hash != page.content_hash:
            reason = 'content changed'
        elif entry.dependencies != graph.dependencies_of(page.id):
            reason = 'links changed'
        elif entry.link_hash != graph.link_hash(page.id, pages_by_id):
            reason = 'linked pages changed'
        elif output_exists is not None and not output_exists(entry.output_path):
            reason = 'output missing'
        else:
            plan.states[page.id] = PageState.BUILT
            continue
        plan.reasons[page.id] = reason
        plan.states[page.id] = PageState.UNBUILT if entry is None else PageState.STALE

    reverse = previous_cache.reverse_dependencies()
    for page_id, holders in graph.backlinks.items():
        reverse.setdefault(page_id, set()).update(holders)

    pending = list(plan.reasons) + list(plan.evicted)
    visited = set(pending)
    while pending:
        changed = pending.pop()
        for holder in sorted(reverse.get(changed, ())):
            if holder in visited or holder not in pages_by_id:
                continue
            visited.add(holder)
            pending.append(holder)
            if holder not in plan.reasons:
                plan.reasons[holder] = f'dependency {changed} changed'
                plan.states[holder] = PageState.STALE

    plan.stale = [page.id for page in ordered if page.id in plan.reasons]
    for page_id in plan.evicted:
        plan.states[page_id] = PageState.EVICTED
    return plan


class PageBuilder:
    """Renders the stale part of a page set and produces the next cache."""

    def __init__(self, renderer, workers=None, parallel_threshold=PARALLEL_THRESHOLD):
        self.renderer = renderer
        self.workers = workers or os.cpu_count() or 1
        self.parallel_threshold = parallel_threshold
        self.logger = logging.getLogger('Wikiforge.Builder')

    def render_page(self, page, graph, pages_by_id):
        """Render one page; returns (html, CacheEntry) for the caller to merge."""
        html = self.renderer.render(page, graph, pages_by_id)
        entry = CacheEntry(
            content_hash=page.content_hash,
            dependencies=graph.dependencies_of(page.id),
            link_hash=graph.link_hash(page.id, pages_by_id),
            output_path=page.output_path,
            rendered_at=time.time(),
        )
        return html, entry

    def build(self, pages, graph, previous_cache=None, full=False, output_exists=None,
              fingerprint='', cancel_event=None):
        previous_cache = previous_cache or BuildCache.empty()
        plan = plan_build(pages, graph, previous_cache, full=full, output_exists=output_exists)
        pages_by_id = {page.id: page for page in pages}

        for page_id in plan.stale:
            self.logger.debug(f"Rebuilding {page_id}: {plan.reasons[page_id]}")
        for page_id in plan.evicted:
            self.logger.debug(f"Evicting {page_id}")

        if cancel_event is not None and cancel_event.is_set():
            raise BuildAborted("Build cancelled before rendering")

        stale_pages = [pages_by_id[page_id] for page_id in plan.stale]
        for page in stale_pages:
            plan.states[page.id] = PageState.RENDERING
        if len(stale_pages) >= self.parallel_threshold and self.workers > 1:
            self.logger.info(f"Rendering {len(stale_pages)} pages with {self.workers} workers")
            results = self._render_parallel(stale_pages, graph, pages_by_id)
        else:
            self.logger.info(f"Rendering {len(stale_pages)} pages")
            results = self._render_single_threaded(stale_pages, graph, pages_by_id)

        entries = {}
        outputs = {}
        for page in pages:
            if page.id in results:
                outputs[page.id], entries[page.id] = results[page.id]
            else:
                entries[page.id] = previous_cache.get(page.id)
            plan.states[page.id] = PageState.BUILT

        return BuildOutcome(outputs=outputs, cache=BuildCache(entries, fingerprint), plan=plan)

    def _render_single_threaded(self, stale_pages, graph, pages_by_id):
        return {page.id: self.render_page(page, graph, pages_by_id) for page in stale_pages}

    def _render_parallel(self, stale_pages, graph, pages_by_id):
        results = {}
        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            futures = {
                executor.submit(self.render_page, page, graph, pages_by_id): page.id
                for page in stale_pages
            }
            for future in as_completed(futures):
                results[futures[future]] = future.result()
        return results
