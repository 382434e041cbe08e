"""Tests for the SVG and text-art renderers and the top-level helpers."""

import io
import random
import string
import urllib.parse
import xml.etree.ElementTree as ET

import pytest

import sequence_diagrams
from sequence_diagrams import (
    SVG_NS,
    SVG_SIZES,
    AsciiTextMeasurer,
    PillowTextMeasurer,
    SvgTheme,
    layout_diagram,
    parse_script,
    render_ascii,
    render_script,
    render_svg,
    script_to_ascii,
    script_to_svg,
    script_to_svg_data_uri,
)


def svg_root(script: str, theme=None):
    parsed = parse_script(script)
    canvas = layout_diagram(parsed.actors, parsed.events, AsciiTextMeasurer(), SVG_SIZES)
    return ET.fromstring(render_svg(parsed.actors, parsed.events, canvas, theme))


def tagged(root, tag):
    return list(root.iter(f"{{{SVG_NS}}}{tag}"))


def tspan_texts(root):
    return [t.text for t in tagged(root, "tspan")]


class TestTextArt:
    def test_simple_signal_grid(self):
        expected = "\n".join([
            "",
            " ╔═╗  ╔═╗",
            " ║A║  ║B║",
            " ╚╤╝  ╚╤╝",
            "  │    │",
            "  │    │",
            "  │ hi │",
            "  │───►│",
            "  │    │",
            "  │    │",
        ])

        assert script_to_ascii("A->B: hi") == expected

    def test_plain_ascii_glyphs(self):
        lines = script_to_ascii("A-->B: hi", use_ascii=True).split("\n")

        assert lines[1] == " +=+  +=+"
        assert lines[3] == " +++  +++"
        assert lines[7] == "  |...>|"

    def test_dotted_and_open_signals(self):
        art = script_to_ascii("A-->B: a\nB->>A: b")

        assert "╌╌►" in art
        assert "<──" in art

    def test_self_signal_hook_grows_canvas(self):
        lines = script_to_ascii("A->A: me").split("\n")

        assert lines[6] == "  me│──┐"
        assert lines[7] == "    │◄─┘"

    def test_self_signal_through_alias_draws_a_hook(self):
        art = script_to_ascii("participant Server as S\nS->Server: ping")

        assert "──┐" in art
        assert "◄─┘" in art

    def test_stick_figure_actor(self):
        art = script_to_ascii("actor User\nUser->System: login")

        assert "._O_." in art
        assert "User" in art

    def test_note_and_group_frames(self):
        script = "participant A\nparticipant B\nalt ok\nA->B: x\nnote right of A: memo\nelse bad\nB->A: y\nend"
        art = script_to_ascii(script)

        assert "alt" in art
        assert "[ok]" in art
        assert "[bad]" in art
        assert "┈" in art
        assert "memo" in art
        assert "·" in art

    def test_state_and_ref_boxes(self):
        art = script_to_ascii("participant A\nstate right of A: idle\nref right of A: other")

        assert "╭" in art and "╯" in art
        assert "┌" in art and "┘" in art

    def test_multiline_caption(self):
        lines = script_to_ascii("participant A\nnote right of A: one\\ntwo").split("\n")

        assert any("one" in l for l in lines)
        assert lines.index(next(l for l in lines if "two" in l)) == lines.index(next(l for l in lines if "one" in l)) + 1

    def test_empty_and_unanchored_scripts_render_nothing(self):
        assert script_to_ascii("") == ""
        assert script_to_ascii("# only a comment") == ""
        assert script_to_ascii("note right of Ghost: boo") == ""

    def test_render_ascii_without_layout_of_unknown_actor(self, laid_out):
        parsed, canvas = laid_out("participant A\nnote right of Nobody: hidden")

        art = render_ascii(parsed.actors, parsed.events, canvas)

        assert "hidden" not in art
        assert "A" in art


class TestSvg:
    def test_document_structure(self):
        root = svg_root("A->B: hi")

        assert root.tag == f"{{{SVG_NS}}}svg"
        assert float(root.get("width")) > 0
        assert float(root.get("height")) > 0
        assert {m.get("id") for m in tagged(root, "marker")} == {
            "arrowClosedRight", "arrowOpenRight", "arrowClosedLeft", "arrowOpenLeft",
        }
        assert len(tagged(root, "rect")) == 2
        assert "hi" in tspan_texts(root)

    def test_signal_strokes_and_markers(self):
        root = svg_root("A-->B: dotted\nA->>B: open")

        dotted, open_ = [l for l in tagged(root, "line") if l.get("marker-end")]
        assert dotted.get("stroke-dasharray") == "4, 2"
        assert dotted.get("marker-end") == "url(#arrowClosedRight)"
        assert open_.get("stroke-dasharray") is None
        assert open_.get("marker-end") == "url(#arrowOpenRight)"

    def test_self_signal_is_a_loop_path(self):
        root = svg_root("A->A: again")

        loops = [p for p in tagged(root, "path") if p.get("marker-end")]
        assert len(loops) == 1
        assert loops[0].get("fill") == "none"

    def test_actor_kinds(self):
        root = svg_root("actor User\nparticipant Service")

        assert len(tagged(root, "circle")) == 1
        assert len(tagged(root, "rect")) == 1

    def test_notes_and_unknown_anchors(self):
        root = svg_root("participant A\nnote right of A: hello\nnote right of Ghost: hidden")

        texts = tspan_texts(root)
        assert "hello" in texts
        assert "hidden" not in texts

    def test_conditional_group(self):
        root = svg_root("alt ok\nA->B: x\nelse bad\nA->B: y\nend")

        texts = tspan_texts(root)
        assert "alt" in texts
        assert "[ok]" in texts
        assert "[bad]" in texts
        separators = [l for l in tagged(root, "line") if l.get("stroke-dasharray")]
        assert len(separators) == 1

    def test_multiline_caption_uses_tspans(self):
        root = svg_root("participant A\nnote left of A\nfirst\nsecond\nend")

        texts = tspan_texts(root)
        assert texts[-3:] == ["first", "second", None]

    def test_text_is_escaped(self):
        root = svg_root("A->B: <b> & c")

        assert "<b> & c" in tspan_texts(root)

    def test_theme_colors(self):
        root = svg_root("A->B: hi", SvgTheme(foreground="#123456", background="#abcdef"))

        rect = tagged(root, "rect")[0]
        assert rect.get("stroke") == "#123456"
        assert "stroke: #abcdef" in tagged(root, "text")[0].get("style")


class TestPillowMeasurer:
    def test_measures_with_default_font(self):
        measurer = PillowTextMeasurer(font_size=16)

        short = measurer.measure("hi")
        long = measurer.measure("hello there")
        two_lines = measurer.measure("hello\\nthere")

        assert 0 < short.width < long.width
        assert two_lines.height > long.height
        assert two_lines.width < long.width

    def test_script_to_svg_with_default_measurer(self):
        svg = script_to_svg("A->B: hi\nnote right of B: ok")

        root = ET.fromstring(svg)
        assert root.tag == f"{{{SVG_NS}}}svg"


class TestTopLevel:
    def test_data_uri_round_trip(self):
        measurer = AsciiTextMeasurer()
        uri = script_to_svg_data_uri("A->B: hi", measurer=measurer)

        prefix = "data:image/svg+xml,"
        assert uri.startswith(prefix + "%3Csvg")
        assert urllib.parse.unquote(uri[len(prefix):]) == script_to_svg("A->B: hi", measurer=measurer)

    def test_render_script_dispatch(self):
        assert render_script("A->B: hi") == script_to_ascii("A->B: hi")
        assert render_script("A->B: hi", "svg", measurer=AsciiTextMeasurer()).startswith("<svg")

    def test_render_script_rejects_bad_arguments(self):
        with pytest.raises(ValueError):
            render_script("A->B: hi", "png")
        with pytest.raises(ValueError):
            render_script(None)


class TestCli:
    def test_renders_file_to_stdout(self, tmp_path, capsys):
        path = tmp_path / "diagram.txt"
        path.write_text("A->B: hi\n", encoding="utf-8")

        assert sequence_diagrams.main([str(path)]) == 0
        assert "╔═╗" in capsys.readouterr().out

    def test_ascii_flag(self, tmp_path, capsys):
        path = tmp_path / "diagram.txt"
        path.write_text("A->B: hi\n", encoding="utf-8")

        assert sequence_diagrams.main([str(path), "--ascii"]) == 0
        out = capsys.readouterr().out
        assert "+=+" in out
        assert "╔" not in out

    def test_svg_to_output_file(self, tmp_path):
        path = tmp_path / "diagram.txt"
        out = tmp_path / "diagram.svg"
        path.write_text("A->B: hi\n", encoding="utf-8")

        assert sequence_diagrams.main([str(path), "--format", "svg", "--foreground", "#333", "-o", str(out)]) == 0
        svg = out.read_text(encoding="utf-8")
        assert svg.startswith("<svg")
        assert "#333" in svg

    def test_reads_stdin(self, monkeypatch, capsys):
        monkeypatch.setattr("sys.stdin", io.StringIO("A->B: piped"))

        assert sequence_diagrams.main(["-"]) == 0
        assert "piped" in capsys.readouterr().out

    def test_missing_file(self, tmp_path, capsys):
        assert sequence_diagrams.main([str(tmp_path / "missing.txt")]) == 1
        assert "Cannot read" in capsys.readouterr().err


FUZZ_TOKENS = [
    "participant", "actor", "note", "ref", "state", "right", "left", "of", "over", "as",
    "alt", "opt", "loop", "par", "seq", "else", "end", "}", "parallel", "serial",
    "activate", "deactivate", "destroy", "autonumber", "#", "A", "B", "C", "->", "-->",
    "->>", "->+", "->-", "->*", ":", '"', "\\n", "x y", "",
]


@pytest.mark.parametrize("seed", range(40))
def test_arbitrary_scripts_never_raise(seed):
    rng = random.Random(seed)
    lines = []
    for _ in range(rng.randint(1, 30)):
        if rng.random() < 0.2:
            lines.append("".join(rng.choice(string.printable) for _ in range(rng.randint(0, 20))))
        else:
            lines.append(rng.choice(["", " "]).join(rng.choice(FUZZ_TOKENS) for _ in range(rng.randint(1, 6))))
    script = "\n".join(lines)

    script_to_ascii(script)
    script_to_ascii(script, use_ascii=True)
    script_to_svg(script, measurer=AsciiTextMeasurer())
