#!/usr/bin/env python3
"""Sequence diagram scripts -> SVG or text-art.

A script is a flat list of lines (participants, signals, notes and nested
alt/opt/loop blocks). It is parsed into an actor list and an event tree,
laid out against a text measurer, and finally rendered by one of two
backends:

- SVG, measured with Pillow glyph metrics
- text-art, measured in monospace character cells

Example script:

    participant Browser
    actor User
    User -> Browser: open page
    Browser -->Server: GET /
    alt cached
    Server -> Browser: 304
    else
    Server -> Browser: 200
    end
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Tuple, Union
import argparse
import logging
import math
import re
import sys
import urllib.parse
import xml.etree.ElementTree as ET

from PIL import Image, ImageDraw, ImageFont

logger = logging.getLogger(__name__)

# =============================================================================
# Types
# =============================================================================

PARTICIPANT_KINDS = ('participant', 'actor')
ANNOTATION_KINDS = ('note', 'ref', 'state')
CONDITIONAL_KINDS = ('alt', 'opt', 'loop', 'par', 'seq')
SYNCHRONY_KINDS = ('parallel', 'serial')
LIFETIME_KINDS = ('activate', 'deactivate', 'destroy')

LINE_BREAK_RE = re.compile(r'\n|\\n')


@dataclass(frozen=True)
class TextSize:
    width: float
    height: float


@dataclass
class Actor:
    kind: str
    caption: str
    alias: str = ''
    width: float = 0
    height: float = 0
    laneX: float = 0
    x: float = 0
    topY: float = 0
    bottomY: float = 0

    def __post_init__(self) -> None:
        if not self.alias:
            self.alias = self.caption


@dataclass
class Signal:
    caption: str
    source: str
    destination: str
    dotted: bool = False
    openArrowhead: bool = False
    spawnsDestination: bool = False
    activatesDestination: bool = False
    deactivatesDestination: bool = False
    kind: str = 'signal'
    startX: Optional[float] = None
    endX: Optional[float] = None
    startY: Optional[float] = None
    endY: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None

    @property
    def isSelf(self) -> bool:
        # Once placed, an alias and its caption share a lane.
        if self.startX is not None and self.endX is not None:
            return self.startX == self.endX
        return self.source == self.destination

    @property
    def placed(self) -> bool:
        return self.startY is not None


@dataclass
class Annotation:
    kind: str
    caption: str
    align: str
    location: Optional[str]
    multiline: bool = False
    x: Optional[float] = None
    y: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None
    textMarginX: float = 0
    textMarginY: float = 0

    @property
    def placed(self) -> bool:
        return self.y is not None


@dataclass
class Case:
    caption: str
    events: List["Event"] = field(default_factory=list)
    y: float = 0
    height: float = 0


@dataclass
class ConditionalGroup:
    kind: str
    cases: List[Case] = field(default_factory=list)
    x: float = 0
    y: float = 0
    width: float = 0
    height: float = 0


@dataclass
class SynchronyGroup:
    kind: str
    events: List["Event"] = field(default_factory=list)


@dataclass
class LifetimeMarker:
    kind: str
    target: str


@dataclass
class NumberingMarker:
    start: str
    kind: str = 'autonumber'


Event = Union[Signal, Annotation, ConditionalGroup, SynchronyGroup, LifetimeMarker, NumberingMarker]
StackFrame = Union[List[Event], ConditionalGroup, Annotation]


@dataclass
class ParsedScript:
    actors: List[Actor]
    events: List[Event]


@dataclass(frozen=True)
class CanvasSize:
    width: float
    height: float


@dataclass
class LayoutSizes:
    padding: float
    signalMargin: float
    noteMarginX: float
    noteMarginY: float
    noteTextMarginX: float
    noteTextMarginY: float
    altMinHeight: float
    altMarginBottom: float
    altMarginItems: float
    actorStickmanHeight: float


SVG_SIZES = LayoutSizes(
    padding=10,
    signalMargin=50,
    noteMarginX=10,
    noteMarginY=20,
    noteTextMarginX=10,
    noteTextMarginY=10,
    altMinHeight=20,
    altMarginBottom=10,
    altMarginItems=30,
    actorStickmanHeight=30,
)

ASCII_SIZES = LayoutSizes(
    padding=1,
    signalMargin=2,
    noteMarginX=1,
    noteMarginY=1,
    noteTextMarginX=1,
    noteTextMarginY=1,
    altMinHeight=3,
    altMarginBottom=1,
    altMarginItems=3,
    actorStickmanHeight=1,
)


@dataclass
class SvgTheme:
    foreground: str = '#000'
    background: str = '#fff'
    fontFamily: str = 'Arial'
    fontSize: int = 16


# =============================================================================
# Text measurement
# =============================================================================

def split_caption(text: str) -> List[str]:
    return LINE_BREAK_RE.split(text)


class TextMeasurer(Protocol):
    def measure(self, text: str) -> TextSize: ...


class AsciiTextMeasurer:
    """Counts monospace cells: longest line by number of lines."""

    def measure(self, text: str) -> TextSize:
        lines = split_caption(text)
        return TextSize(width=max(len(l) for l in lines), height=len(lines))


class PillowTextMeasurer:
    """Glyph metrics for the SVG backend.

    Lines are stacked 1em apart, which is how `render_svg` lays out its
    tspans, so the height is `fontSize * (lines - 1)` plus one line box.
    """

    def __init__(self, font_path: Optional[str] = None, font_size: int = 16) -> None:
        self.font_size = font_size
        if font_path:
            self.font = ImageFont.truetype(font_path, font_size)
        else:
            self.font = ImageFont.load_default(size=font_size)

    def measure(self, text: str) -> TextSize:
        lines = split_caption(text)
        # Scratch surface lives for a single measurement.
        surface = Image.new('L', (1, 1))
        try:
            draw = ImageDraw.Draw(surface)
            width = max(draw.textlength(l, font=self.font) for l in lines)
        finally:
            surface.close()
        return TextSize(width=width, height=self.font_size * (len(lines) - 1) + self.line_height())

    def line_height(self) -> float:
        try:
            ascent, descent = self.font.getmetrics()
        except AttributeError:
            return float(self.font_size)
        return float(ascent + descent)


# =============================================================================
# Parser
# =============================================================================

def parse_script(text: str) -> ParsedScript:
    actors: List[Actor] = []
    events: List[Event] = []
    stack: List[StackFrame] = [events]

    for line in text.split('\n'):
        line = line.strip()
        command, _, rest = line.partition(' ')
        top = stack[-1]

        if command == 'end':
            if len(stack) > 1:
                stack.pop()
            # Conditional groups sit on the stack twice: wrapper and case list.
            if isinstance(stack[-1], ConditionalGroup):
                stack.pop()

        elif isinstance(top, Annotation):
            top.caption += line + '\n'

        elif command in PARTICIPANT_KINDS:
            caption, _, alias = rest.partition(' as ')
            caption = strip_quotes(caption)
            if not caption:
                logger.debug("Dropping %s declaration without a name", command)
                continue
            actors.append(Actor(kind=command, caption=caption, alias=strip_quotes(alias) or caption))

        elif command in ANNOTATION_KINDS:
            annotation = parse_annotation(command, rest)
            current_sequence(stack).append(annotation)
            if annotation.multiline:
                stack.append(annotation)

        elif command in CONDITIONAL_KINDS:
            group = ConditionalGroup(kind=command, cases=[Case(caption=rest)])
            current_sequence(stack).append(group)
            stack.append(group)
            stack.append(group.cases[0].events)

        elif command == 'else':
            if len(stack) > 1:
                stack.pop()
            if isinstance(stack[-1], ConditionalGroup):
                case = Case(caption=rest)
                stack[-1].cases.append(case)
                stack.append(case.events)
            else:
                logger.debug("'else' outside of a conditional block: %r", line)

        elif command in LIFETIME_KINDS:
            current_sequence(stack).append(LifetimeMarker(kind=command, target=strip_quotes(rest)))

        elif command in SYNCHRONY_KINDS:
            group = SynchronyGroup(kind=command)
            current_sequence(stack).append(group)
            stack.append(group.events)

        elif command == '}':
            if len(stack) > 1:
                stack.pop()

        elif command == 'autonumber':
            current_sequence(stack).append(NumberingMarker(start=rest))

        elif command.startswith('#'):
            continue

        else:
            parse_signal_line(line, actors, current_sequence(stack))

    if len(stack) > 1:
        logger.debug("Script ended with %d unclosed block(s)", len(stack) - 1)

    return ParsedScript(actors=actors, events=events)


def current_sequence(stack: List[StackFrame]) -> List[Event]:
    # A stray `}` inside a case exposes the group wrapper; keep filling its
    # last case.
    top = stack[-1]
    if isinstance(top, ConditionalGroup):
        return top.cases[-1].events
    return top  # type: ignore[return-value]


def strip_quotes(text: str) -> str:
    return text.strip().replace('"', '')


def parse_annotation(kind: str, rest: str) -> Annotation:
    location_part, _, caption = rest.partition(':')
    tokens = location_part.split()
    align = tokens[0] if tokens else ''
    location: Optional[str] = None
    if len(tokens) >= 3:
        location = strip_quotes(' '.join(tokens[2:]))
    elif len(tokens) == 2:
        # "note over A" has no preposition
        location = strip_quotes(tokens[1])

    multiline = not caption
    return Annotation(kind=kind, caption=caption.strip(), align=align, location=location, multiline=multiline)


def split_on_unquoted_colon(text: str) -> Tuple[str, str]:
    quoted = False
    for i, ch in enumerate(text):
        if ch == '"':
            quoted = not quoted
        elif ch == ':' and not quoted:
            return text[:i], text[i + 1:]
    return text, ''


def parse_signal_line(line: str, actors: List[Actor], sequence: List[Event]) -> None:
    src_dest, caption = split_on_unquoted_colon(line)
    src, arrow, dest = src_dest.partition('->')
    if not caption or not arrow:
        if line:
            logger.debug("Ignoring unrecognized line: %r", line)
        return

    src = strip_quotes(src)
    dest = strip_quotes(dest)

    dotted = src.endswith('-')
    if dotted:
        src = src[:-1]

    flags: Dict[str, bool] = {}
    for prefix, name in (('>', 'open'), ('*', 'spawn'), ('+', 'activate'), ('-', 'deactivate')):
        flags[name] = dest.startswith(prefix)
        if flags[name]:
            dest = dest[1:]

    src = src.strip()
    dest = dest.strip()
    if not src or not dest:
        logger.debug("Ignoring signal without source or destination: %r", line)
        return

    sequence.append(Signal(
        caption=caption.strip(),
        source=src,
        destination=dest,
        dotted=dotted,
        openArrowhead=flags['open'],
        spawnsDestination=flags['spawn'],
        activatesDestination=flags['activate'],
        deactivatesDestination=flags['deactivate'],
    ))
    if flags['activate']:
        sequence.append(LifetimeMarker(kind='activate', target=dest))
    if flags['deactivate']:
        sequence.append(LifetimeMarker(kind='deactivate', target=dest))

    for name in (src, dest):
        if not any(a.caption == name or a.alias == name for a in actors):
            actors.append(Actor(kind='participant', caption=name))


# =============================================================================
# Layout
# =============================================================================

ActorLookup = Dict[str, Tuple[Actor, int]]
GapTriple = Tuple[int, int, float]


def build_actor_lookup(actors: List[Actor]) -> ActorLookup:
    lookup: ActorLookup = {}
    for idx, actor in enumerate(actors):
        lookup[actor.alias] = (actor, idx)
    # Captions win over aliases; later declarations win over earlier ones.
    for idx, actor in enumerate(actors):
        lookup[actor.caption] = (actor, idx)
    return lookup


def layout_diagram(actors: List[Actor], events: List[Event], measurer: TextMeasurer, sizes: LayoutSizes) -> CanvasSize:
    lookup = build_actor_lookup(actors)
    padding = sizes.padding
    gaps = [0.0] * (len(actors) + 1)

    for i, actor in enumerate(actors):
        bbox = measurer.measure(actor.caption)
        extra_height = sizes.actorStickmanHeight if actor.kind == 'actor' else 0
        actor.width = bbox.width + 2 * padding
        actor.height = bbox.height + 2 * padding + extra_height
        gaps[i] += actor.width / 2 + padding
        gaps[i + 1] += actor.width / 2 + padding

    triples = collect_lane_gaps(lookup, events, measurer, sizes)

    for idx_a, idx_b, minimum in triples:
        lo, hi = min(idx_a, idx_b), max(idx_a, idx_b)
        if hi == lo + 1 and gaps[hi] < minimum:
            gaps[hi] = minimum
        if hi == lo and gaps[lo] < minimum:
            gaps[lo] = minimum

    for idx_a, idx_b, minimum in triples:
        lo, hi = min(idx_a, idx_b), max(idx_a, idx_b)
        if hi <= lo + 1:
            continue
        available = sum(gaps[lo:hi])
        if available < minimum:
            extra = (minimum - available) / (hi - lo)
            for j in range(lo + 1, hi + 1):
                gaps[j] += extra

    offset_x = gaps[0]
    max_actor_height = 0.0
    for i, actor in enumerate(actors):
        actor.laneX = offset_x
        actor.x = actor.laneX - actor.width / 2
        actor.topY = padding
        max_actor_height = max(max_actor_height, actor.height)
        offset_x += gaps[i + 1]

    start_y = max_actor_height + padding * 2 + 1
    bottom_y = place_events(lookup, events, start_y, offset_x, sizes)

    for actor in actors:
        actor.bottomY = bottom_y

    return CanvasSize(width=offset_x, height=bottom_y + padding)


def collect_lane_gaps(lookup: ActorLookup, events: List[Event], measurer: TextMeasurer, sizes: LayoutSizes) -> List[GapTriple]:
    triples: List[GapTriple] = []
    padding = sizes.padding

    for e in events:
        if isinstance(e, Signal):
            src = lookup.get(e.source)
            dest = lookup.get(e.destination)
            if src and dest:
                bbox = measurer.measure(e.caption)
                e.width = bbox.width
                e.height = bbox.height
                triples.append((src[1], dest[1], bbox.width + 2 * padding))
            else:
                logger.debug("Signal %r -> %r references an unknown actor", e.source, e.destination)
        elif isinstance(e, Annotation):
            loc = lookup.get(e.location) if e.location else None
            if loc:
                bbox = measurer.measure(e.caption)
                e.width = bbox.width + 2 * padding
                e.height = bbox.height + 2 * padding
                # Annotations always claim the gap to the right of their lane.
                triples.append((loc[1], loc[1] + 1, e.width + 2 * padding))
            else:
                logger.debug("%s anchored to unknown actor %r is not placed", e.kind, e.location)
        elif isinstance(e, ConditionalGroup):
            for case in e.cases:
                triples.extend(collect_lane_gaps(lookup, case.events, measurer, sizes))
        elif isinstance(e, SynchronyGroup):
            triples.extend(collect_lane_gaps(lookup, e.events, measurer, sizes))

    return triples


def place_events(lookup: ActorLookup, events: List[Event], start_y: float, total_width: float, sizes: LayoutSizes) -> float:
    y = start_y
    for e in events:
        if isinstance(e, Signal):
            src = lookup.get(e.source)
            dest = lookup.get(e.destination)
            if src and dest:
                e.startX = src[0].laneX
                e.endX = dest[0].laneX
                e.startY = y
                e.endY = y
                y += sizes.signalMargin + e.height
        elif isinstance(e, Annotation):
            loc = lookup.get(e.location) if e.location else None
            if loc:
                e.x = loc[0].laneX + sizes.noteMarginX
                e.y = y
                e.textMarginX = sizes.noteTextMarginX
                e.textMarginY = sizes.noteTextMarginY
                y += sizes.noteMarginY + e.height
        elif isinstance(e, ConditionalGroup):
            e.x = 0
            e.y = y
            y += sizes.altMarginItems
            group_height = sizes.altMinHeight
            for case in e.cases:
                end_y = place_events(lookup, case.events, y, total_width, sizes)
                case.y = y
                case.height = end_y - y
                group_height += case.height
                y = end_y
            e.height = group_height
            e.width = total_width
            y += sizes.altMarginBottom
        elif isinstance(e, SynchronyGroup):
            y = place_events(lookup, e.events, y, total_width, sizes)
    return y


# =============================================================================
# SVG renderer
# =============================================================================

SVG_NS = 'http://www.w3.org/2000/svg'
FOLD_SIZE = 10
TAB_WIDTH = 40


def fmt(value: float) -> str:
    text = f"{value:.2f}".rstrip('0').rstrip('.')
    return '0' if text == '-0' else text


def svg_element(parent: Optional[ET.Element], tag: str, **attrs: object) -> ET.Element:
    values = {k.replace('_', '-'): (fmt(v) if isinstance(v, (int, float)) and not isinstance(v, bool) else str(v))
              for k, v in attrs.items()}
    if parent is None:
        return ET.Element(tag, values)
    return ET.SubElement(parent, tag, values)


def svg_text(parent: ET.Element, x: float, y: float, content: str, theme: SvgTheme, anchor: str = 'start') -> ET.Element:
    text = svg_element(
        parent, 'text', x=x, y=y, text_anchor=anchor, dominant_baseline='hanging',
        style=(f"font-size: {theme.fontSize}px; font-family: {theme.fontFamily}; fill: {theme.foreground}; "
               f"stroke: {theme.background}; stroke-width: 4; paint-order: stroke fill;"),
    )
    for i, line in enumerate(split_caption(content)):
        span = svg_element(text, 'tspan', x=x, dy='0' if i == 0 else '1em')
        span.text = line
    return text


def svg_arrow_definitions(svg: ET.Element, theme: SvgTheme) -> None:
    defs = svg_element(svg, 'defs')
    markers = (
        ('arrowClosedRight', 'M0,-5L10,0L0,5', theme.foreground),
        ('arrowOpenRight', 'M0,-5L10,0M10,0L0,5', 'none'),
        ('arrowClosedLeft', 'M10,-5L0,0L10,5', theme.foreground),
        ('arrowOpenLeft', 'M10,-5L0,0M0,0L10,5', 'none'),
    )
    for marker_id, path_d, fill in markers:
        marker = svg_element(defs, 'marker', id=marker_id, viewBox='0 -5 10 10', refX=5, refY=0,
                             markerWidth=6, markerHeight=6, orient='auto')
        svg_element(marker, 'path', d=path_d, fill=fill, stroke=theme.foreground, stroke_width='2px',
                    **{'class': 'arrowHead'})


def svg_stick_figure(parent: ET.Element, actor: Actor, theme: SvgTheme) -> None:
    cx = actor.laneX
    top = actor.topY
    group = svg_element(parent, 'g', stroke=theme.foreground, stroke_width='2px', fill='none')
    svg_element(group, 'circle', cx=cx, cy=top + 6, r=6)
    svg_element(group, 'line', x1=cx, y1=top + 12, x2=cx, y2=top + 22)
    svg_element(group, 'line', x1=cx, y1=top + 16, x2=cx - 8, y2=top + 12)
    svg_element(group, 'line', x1=cx, y1=top + 16, x2=cx + 8, y2=top + 12)
    svg_element(group, 'line', x1=cx, y1=top + 22, x2=cx - 8, y2=top + 30)
    svg_element(group, 'line', x1=cx, y1=top + 22, x2=cx + 8, y2=top + 30)


def svg_participant(svg: ET.Element, actor: Actor, theme: SvgTheme, sizes: LayoutSizes) -> None:
    group = svg_element(svg, 'g')
    caption_y = actor.topY + sizes.padding
    if actor.kind == 'actor':
        svg_stick_figure(group, actor, theme)
        caption_y += sizes.actorStickmanHeight
    else:
        svg_element(group, 'rect', x=actor.x, y=actor.topY, width=actor.width, height=actor.height,
                    fill='none', stroke=theme.foreground, stroke_width='2px')
    svg_element(group, 'line', x1=actor.laneX, y1=actor.topY + actor.height, x2=actor.laneX, y2=actor.bottomY,
                stroke=theme.foreground, stroke_width='1px')
    svg_text(group, actor.x + sizes.padding, caption_y, actor.caption, theme)


def svg_signal(parent: ET.Element, signal: Signal, theme: SvgTheme) -> None:
    group = svg_element(parent, 'g')
    attrs: Dict[str, object] = {
        'stroke': theme.foreground,
        'stroke_width': '2px',
        'marker_end': 'url(#arrow%sRight)' % ('Open' if signal.openArrowhead else 'Closed'),
    }
    if signal.dotted:
        attrs['stroke_dasharray'] = '4, 2'

    if signal.isSelf:
        loop_y = signal.startY + signal.height / 2
        attrs['fill'] = 'none'
        attrs['d'] = (f"M {fmt(signal.startX)} {fmt(loop_y - 10)} h 50 a 10 10 0 0 1 10 10 "
                      f"v 1 a 10 10 0 0 1 -10 10 h -44")
        svg_element(group, 'path', **attrs)
        svg_text(group, signal.startX - 5, signal.startY, signal.caption, theme, anchor='end')
        return

    line_y = signal.startY + signal.height
    direction = 1 if signal.startX < signal.endX else -1
    svg_element(group, 'line', x1=signal.startX, y1=line_y, x2=signal.endX - 7 * direction, y2=line_y, **attrs)
    svg_text(group, (signal.startX + signal.endX) / 2, signal.startY, signal.caption, theme, anchor='middle')


def svg_annotation(parent: ET.Element, note: Annotation, theme: SvgTheme) -> None:
    group = svg_element(parent, 'g', fill='none', stroke=theme.foreground, stroke_width='2px')
    if note.kind == 'state':
        svg_element(group, 'rect', x=note.x, y=note.y, rx=10, ry=10, width=note.width, height=note.height)
    elif note.kind == 'ref':
        svg_element(group, 'rect', x=note.x, y=note.y, width=note.width, height=note.height)
    else:
        svg_element(group, 'path', d=(f"M {fmt(note.x + note.width - FOLD_SIZE)},{fmt(note.y + 1)} "
                                      f"v {FOLD_SIZE - 1} h {FOLD_SIZE - 1}"))
        svg_element(group, 'path', d=(f"M {fmt(note.x)} {fmt(note.y)} h {fmt(note.width - FOLD_SIZE)} "
                                      f"l {FOLD_SIZE} {FOLD_SIZE} v {fmt(note.height - FOLD_SIZE)} "
                                      f"h {fmt(-note.width)} z"))
    svg_text(group, note.x + note.textMarginX, note.y + note.textMarginY, note.caption, theme)


def svg_group(parent: ET.Element, group: ConditionalGroup, theme: SvgTheme, sizes: LayoutSizes) -> None:
    g = svg_element(parent, 'g')
    frame = svg_element(g, 'g', fill='none', stroke=theme.foreground, stroke_width='2px')
    svg_element(frame, 'path', d=f"M {fmt(group.x + TAB_WIDTH)} {fmt(group.y)} v 15 l -5 5 h -35")
    svg_element(frame, 'rect', x=group.x, y=group.y, width=group.width, height=group.height)
    svg_text(g, group.x + sizes.padding / 2, group.y + 3, group.kind, theme)

    for i, case in enumerate(group.cases):
        if i == 0:
            label_x = group.x + TAB_WIDTH + sizes.padding
            label_y = group.y + 3
        else:
            label_x = group.x + sizes.padding
            label_y = case.y - sizes.padding
            svg_element(g, 'line', x1=group.x, y1=label_y, x2=group.x + group.width, y2=label_y,
                        stroke=theme.foreground, stroke_width='2px', stroke_dasharray='4, 2')
            label_y += 3
        if case.caption:
            svg_text(g, label_x, label_y, f"[{case.caption}]", theme)
        svg_events(g, case.events, theme, sizes)


def svg_events(parent: ET.Element, events: List[Event], theme: SvgTheme, sizes: LayoutSizes) -> None:
    for e in events:
        if isinstance(e, Signal):
            if e.placed:
                svg_signal(parent, e, theme)
        elif isinstance(e, Annotation):
            if e.placed:
                svg_annotation(parent, e, theme)
        elif isinstance(e, ConditionalGroup):
            svg_group(parent, e, theme, sizes)
        elif isinstance(e, SynchronyGroup):
            svg_events(parent, e.events, theme, sizes)


def render_svg(actors: List[Actor], events: List[Event], canvas: CanvasSize,
               theme: Optional[SvgTheme] = None, sizes: LayoutSizes = SVG_SIZES) -> str:
    theme = theme or SvgTheme()
    svg = svg_element(None, 'svg', xmlns=SVG_NS, width=canvas.width, height=canvas.height, overflow='visible')
    svg_arrow_definitions(svg, theme)
    for actor in actors:
        svg_participant(svg, actor, theme, sizes)
    svg_events(svg, events, theme, sizes)
    return ET.tostring(svg, encoding='unicode')


# =============================================================================
# Text-art renderer
# =============================================================================

Canvas = List[List[str]]


@dataclass(frozen=True)
class TextArtGlyphs:
    boxH: str
    boxV: str
    boxTL: str
    boxTR: str
    boxBL: str
    boxBR: str
    laneTee: str
    lifeline: str
    line: str
    dotted: str
    closedRight: str
    closedLeft: str
    openRight: str
    openLeft: str
    loopTop: str
    loopBottom: str
    dogEar: str
    divider: str
    tabJoin: str
    tabCorner: str
    thinH: str
    thinV: str
    thinTL: str
    thinTR: str
    thinBL: str
    thinBR: str
    roundTL: str
    roundTR: str
    roundBL: str
    roundBR: str


UNICODE_GLYPHS = TextArtGlyphs(
    boxH='═', boxV='║', boxTL='╔', boxTR='╗', boxBL='╚', boxBR='╝',
    laneTee='╤', lifeline='│', line='─', dotted='╌',
    closedRight='►', closedLeft='◄', openRight='>', openLeft='<',
    loopTop='┐', loopBottom='┘', dogEar='·', divider='┈',
    tabJoin='╟', tabCorner='╯',
    thinH='─', thinV='│', thinTL='┌', thinTR='┐', thinBL='└', thinBR='┘',
    roundTL='╭', roundTR='╮', roundBL='╰', roundBR='╯',
)

ASCII_GLYPHS = TextArtGlyphs(
    boxH='=', boxV='|', boxTL='+', boxTR='+', boxBL='+', boxBR='+',
    laneTee='+', lifeline='|', line='-', dotted='.',
    closedRight='>', closedLeft='<', openRight='>', openLeft='<',
    loopTop='+', loopBottom='+', dogEar='.', divider='.',
    tabJoin='+', tabCorner='+',
    thinH='-', thinV='|', thinTL='+', thinTR='+', thinBL='+', thinBR='+',
    roundTL='.', roundTR='.', roundBL="'", roundBR="'",
)


def mk_canvas(x: int, y: int) -> Canvas:
    canvas: Canvas = []
    for _ in range(x + 1):
        canvas.append([" "] * (y + 1))
    return canvas


def canvas_to_string(canvas: Canvas) -> str:
    if not canvas:
        return ''
    lines: List[str] = []
    for y in range(len(canvas[0])):
        lines.append(''.join(canvas[x][y] for x in range(len(canvas))).rstrip())
    return '\n'.join(lines).rstrip('\n')


def get_canvas_size(canvas: Canvas) -> Tuple[int, int]:
    return (len(canvas) - 1, (len(canvas[0]) if canvas else 1) - 1)


def increase_size(canvas: Canvas, new_x: int, new_y: int) -> Canvas:
    curr_x, curr_y = get_canvas_size(canvas)
    target_x = max(new_x, curr_x)
    target_y = max(new_y, curr_y)
    grown = mk_canvas(target_x, target_y)
    for x in range(len(canvas)):
        for y in range(len(canvas[0])):
            grown[x][y] = canvas[x][y]
    canvas[:] = grown
    return canvas


def put(canvas: Canvas, x: int, y: int, ch: str) -> None:
    # Self-signal hooks may reach past the right edge; grow rather than clip.
    if x < 0 or y < 0:
        return
    if x >= len(canvas) or y >= len(canvas[0]):
        increase_size(canvas, x, y)
    canvas[x][y] = ch


def draw_text(canvas: Canvas, x: int, y: int, text: str) -> None:
    for row, line in enumerate(split_caption(text)):
        for i, ch in enumerate(line):
            put(canvas, x + i, y + row, ch)


def draw_box(canvas: Canvas, x: int, y: int, w: int, h: int,
             h_ch: str, v_ch: str, tl: str, tr: str, bl: str, br: str) -> None:
    for i in range(1, w - 1):
        put(canvas, x + i, y, h_ch)
        put(canvas, x + i, y + h - 1, h_ch)
    for i in range(1, h - 1):
        put(canvas, x, y + i, v_ch)
        put(canvas, x + w - 1, y + i, v_ch)
    put(canvas, x, y, tl)
    put(canvas, x + w - 1, y, tr)
    put(canvas, x, y + h - 1, bl)
    put(canvas, x + w - 1, y + h - 1, br)


def cell(value: Optional[float]) -> int:
    return int(math.floor(value or 0))


def draw_ascii_participant(canvas: Canvas, actor: Actor, g: TextArtGlyphs) -> None:
    x = cell(actor.x)
    y = cell(actor.topY)
    w = cell(actor.width)
    h = cell(actor.height)
    lane = cell(actor.laneX)

    if actor.kind == 'actor':
        for dx, ch in zip(range(-2, 3), '._O_.'):
            put(canvas, lane + dx, y, ch)
        put(canvas, lane, y + 1, '|')
        put(canvas, lane - 1, y + 2, '/')
        put(canvas, lane + 1, y + 2, '\\')
        draw_text(canvas, x + 1, y + 3, actor.caption)
    else:
        draw_box(canvas, x, y, w, h, g.boxH, g.boxV, g.boxTL, g.boxTR, g.boxBL, g.boxBR)
        put(canvas, lane, y + h - 1, g.laneTee)
        draw_text(canvas, x + 1, y + 1, actor.caption)

    for row in range(y + h, cell(actor.bottomY) + 1):
        put(canvas, lane, row, g.lifeline)


def draw_ascii_signal(canvas: Canvas, signal: Signal, g: TextArtGlyphs) -> None:
    start_x = cell(signal.startX)
    end_x = cell(signal.endX)
    y = cell(signal.startY)
    line_y = y + max(cell(signal.height), 1)
    stroke = g.dotted if signal.dotted else g.line

    if signal.isSelf:
        put(canvas, start_x + 1, line_y - 1, stroke)
        put(canvas, start_x + 2, line_y - 1, stroke)
        put(canvas, start_x + 3, line_y - 1, g.loopTop)
        put(canvas, start_x + 3, line_y, g.loopBottom)
        put(canvas, start_x + 2, line_y, stroke)
        put(canvas, start_x + 1, line_y, g.openLeft if signal.openArrowhead else g.closedLeft)
        draw_text(canvas, start_x - int(math.ceil(signal.width or 0)), y, signal.caption)
        return

    for x in range(min(start_x, end_x) + 1, max(start_x, end_x)):
        put(canvas, x, line_y, stroke)
    if start_x < end_x:
        put(canvas, end_x - 1, line_y, g.openRight if signal.openArrowhead else g.closedRight)
    else:
        put(canvas, end_x + 1, line_y, g.openLeft if signal.openArrowhead else g.closedLeft)

    text_x = cell((signal.startX + signal.endX) / 2) - cell((signal.width or 0) / 2)
    draw_text(canvas, text_x, y, signal.caption)


def draw_ascii_annotation(canvas: Canvas, note: Annotation, g: TextArtGlyphs) -> None:
    x = cell(note.x)
    y = cell(note.y)
    w = cell(note.width)
    h = cell(note.height)
    if note.kind == 'state':
        draw_box(canvas, x, y, w, h, g.thinH, g.thinV, g.roundTL, g.roundTR, g.roundBL, g.roundBR)
    elif note.kind == 'ref':
        draw_box(canvas, x, y, w, h, g.thinH, g.thinV, g.thinTL, g.thinTR, g.thinBL, g.thinBR)
    else:
        draw_box(canvas, x, y, w, h, g.boxH, g.boxV, g.boxTL, g.dogEar, g.boxBL, g.boxBR)
    draw_text(canvas, x + cell(note.textMarginX), y + cell(note.textMarginY), note.caption)


def draw_ascii_group(canvas: Canvas, group: ConditionalGroup, g: TextArtGlyphs) -> None:
    x = cell(group.x)
    y = cell(group.y)
    w = cell(group.width)
    h = cell(group.height)

    draw_box(canvas, x, y, w, h, g.boxH, g.boxV, g.boxTL, g.boxTR, g.boxBL, g.boxBR)
    put(canvas, x + 6, y, g.laneTee)
    put(canvas, x + 6, y + 1, g.thinV)
    put(canvas, x, y + 2, g.tabJoin)
    for i in range(1, 6):
        put(canvas, x + i, y + 2, g.thinH)
    put(canvas, x + 6, y + 2, g.tabCorner)
    draw_text(canvas, x + 2, y + 1, group.kind)

    for i, case in enumerate(group.cases):
        if i == 0:
            if case.caption:
                draw_text(canvas, x + 8, y + 1, f"[{case.caption}]")
        else:
            divider_y = cell(case.y) - 1
            for dx in range(1, w - 1):
                put(canvas, x + dx, divider_y, g.divider)
            if case.caption:
                draw_text(canvas, x + 2, divider_y, f"[{case.caption}]")
        draw_ascii_events(canvas, case.events, g)


def draw_ascii_events(canvas: Canvas, events: List[Event], g: TextArtGlyphs) -> None:
    for e in events:
        if isinstance(e, Signal):
            if e.placed:
                draw_ascii_signal(canvas, e, g)
        elif isinstance(e, Annotation):
            if e.placed:
                draw_ascii_annotation(canvas, e, g)
        elif isinstance(e, ConditionalGroup):
            draw_ascii_group(canvas, e, g)
        elif isinstance(e, SynchronyGroup):
            draw_ascii_events(canvas, e.events, g)


def render_ascii(actors: List[Actor], events: List[Event], canvas_size: CanvasSize, use_ascii: bool = False) -> str:
    if not actors and not events:
        return ''
    glyphs = ASCII_GLYPHS if use_ascii else UNICODE_GLYPHS
    canvas = mk_canvas(max(int(math.ceil(canvas_size.width)) - 1, 0), int(math.ceil(canvas_size.height)) + 1)

    for actor in actors:
        draw_ascii_participant(canvas, actor, glyphs)
    draw_ascii_events(canvas, events, glyphs)

    return canvas_to_string(canvas)


# =============================================================================
# Top-level render
# =============================================================================

OUTPUT_FORMATS = ('ascii', 'svg')


def script_to_svg(text: str, theme: Optional[SvgTheme] = None, measurer: Optional[TextMeasurer] = None) -> str:
    theme = theme or SvgTheme()
    measurer = measurer or PillowTextMeasurer(font_size=theme.fontSize)
    parsed = parse_script(text)
    canvas = layout_diagram(parsed.actors, parsed.events, measurer, SVG_SIZES)
    return render_svg(parsed.actors, parsed.events, canvas, theme, SVG_SIZES)


def script_to_ascii(text: str, use_ascii: bool = False) -> str:
    parsed = parse_script(text)
    canvas = layout_diagram(parsed.actors, parsed.events, AsciiTextMeasurer(), ASCII_SIZES)
    return render_ascii(parsed.actors, parsed.events, canvas, use_ascii)


def script_to_svg_data_uri(text: str, theme: Optional[SvgTheme] = None, measurer: Optional[TextMeasurer] = None) -> str:
    svg = script_to_svg(text, theme, measurer)
    return 'data:image/svg+xml,' + urllib.parse.quote(svg, safe="-_.!~*'()")


def render_script(text: str, output_format: str = 'ascii', use_ascii: bool = False,
                  theme: Optional[SvgTheme] = None, measurer: Optional[TextMeasurer] = None) -> str:
    if not isinstance(text, str):
        raise ValueError(f"Expected script text, got {type(text).__name__}")
    if output_format == 'ascii':
        return script_to_ascii(text, use_ascii=use_ascii)
    if output_format == 'svg':
        return script_to_svg(text, theme=theme, measurer=measurer)
    raise ValueError(f"Unknown output format: \"{output_format}\". Expected one of {', '.join(OUTPUT_FORMATS)}.")


# =============================================================================
# CLI
# =============================================================================

def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description='Render sequence diagram scripts to SVG or text-art.')
    parser.add_argument('input', help="Path to a diagram script ('-' reads stdin)")
    parser.add_argument('--format', choices=OUTPUT_FORMATS, default='ascii', help='Output format')
    parser.add_argument('--ascii', action='store_true', help='Use ASCII characters instead of Unicode box drawing')
    parser.add_argument('--foreground', default='#000', help='SVG stroke and text color')
    parser.add_argument('--background', default='#fff', help='SVG text halo color')
    parser.add_argument('--font', default=None, help='TrueType font used to measure SVG text')
    parser.add_argument('--font-size', type=int, default=16, help='SVG font size in pixels')
    parser.add_argument('-o', '--output', default=None, help='Write to this file instead of stdout')
    parser.add_argument('-v', '--verbose', action='store_true', help='Log skipped lines and events')
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format='%(levelname)s %(name)s: %(message)s')

    try:
        if args.input == '-':
            text = sys.stdin.read()
        else:
            with open(args.input, 'r', encoding='utf-8') as f:
                text = f.read()
    except OSError as exc:
        print(f"Cannot read {args.input}: {exc}", file=sys.stderr)
        return 1

    measurer = None
    theme = SvgTheme(foreground=args.foreground, background=args.background, fontSize=args.font_size)
    if args.format == 'svg':
        try:
            measurer = PillowTextMeasurer(font_path=args.font, font_size=args.font_size)
        except OSError as exc:
            print(f"Cannot load font {args.font}: {exc}", file=sys.stderr)
            return 1

    output = render_script(text, args.format, use_ascii=args.ascii, theme=theme, measurer=measurer)

    if args.output:
        try:
            with open(args.output, 'w', encoding='utf-8') as f:
                f.write(output + '\n')
        except OSError as exc:
            print(f"Cannot write {args.output}: {exc}", file=sys.stderr)
            return 1
    else:
        print(output)
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
