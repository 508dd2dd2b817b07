from dataclasses import dataclass
from typing import Literal

import diff_match_patch as dmp
from rich.console import Console
from rich.table import Table
from rich.text import Text

from .hifz_typing import AlignmentTrace
from .scoring import MistakeReport
from .text_mode import normalize_text, split_words


@dataclass
class WordGroup:
    ref: str = ""
    out: str = ""
    tag: Literal["exact", "partial", "insert", "delete"] | None = None

    def get_tag(self):
        if self.ref == "" and self.out == "":
            raise ValueError("The Entire group is empty")
        if self.ref == self.out:
            self.tag = "exact"
        elif self.ref != "" and self.out == "":
            self.tag = "delete"
        elif self.out != "" and self.ref == "":
            self.tag = "insert"
        else:
            self.tag = "partial"
        return self.tag


def word_groups(expected: str, recognized: str) -> list[WordGroup]:
    """Word-level diff: every word becomes one diff "character" (line mode)."""
    dmp_obj = dmp.diff_match_patch()
    ref_lines = "\n".join(split_words(expected))
    out_lines = "\n".join(split_words(recognized))
    chars_ref, chars_out, line_array = dmp_obj.diff_linesToChars(ref_lines + "\n", out_lines + "\n")
    diffs = dmp_obj.diff_main(chars_ref, chars_out, False)
    dmp_obj.diff_charsToLines(diffs, line_array)

    groups = []
    deleted = []  # groups of the last deletion, waiting for a substitute
    for op, data in diffs:
        words = [w for w in data.split("\n") if w]
        if op == dmp_obj.DIFF_EQUAL:
            groups.extend(WordGroup(ref=w, out=w) for w in words)
            deleted = []
        elif op == dmp_obj.DIFF_DELETE:
            deleted = [WordGroup(ref=w) for w in words]
            groups.extend(deleted)
        else:
            # Insertions right after a deletion are substituted words
            for w in words:
                if deleted:
                    deleted.pop(0).out = w
                else:
                    groups.append(WordGroup(out=w))

    for group in groups:
        group.get_tag()
    return groups


def diff_text(expected: str, recognized: str) -> Text:
    """Character-level colored diff of the normalized texts"""
    dmp_obj = dmp.diff_match_patch()
    diffs = dmp_obj.diff_main(normalize_text(expected), normalize_text(recognized))
    dmp_obj.diff_cleanupSemantic(diffs)

    result = Text()
    for op, data in diffs:
        if op == dmp_obj.DIFF_EQUAL:
            result.append(data, style="white")
        elif op == dmp_obj.DIFF_INSERT:
            result.append(data, style="green")
        elif op == dmp_obj.DIFF_DELETE:
            result.append(data, style="red strike")
    return result


def mistakes_table(report: MistakeReport, groups: list[WordGroup]) -> Table:
    rich_table = Table(title=report.feedback)
    rich_table.add_column("Expected")
    rich_table.add_column("Recited")
    rich_table.add_column("Tag", style="cyan")

    for group in groups:
        if group.tag == "exact":
            rich_table.add_row(group.ref, group.out, group.tag)
        elif group.tag == "partial":
            rich_table.add_row(group.ref, f"[red]{group.out}[/red]", group.tag)
        elif group.tag == "insert":
            rich_table.add_row("", f"[yellow]{group.out}[/yellow]", group.tag)
        else:
            rich_table.add_row(f"[red strike]{group.ref}[/red strike]", "", group.tag)
    return rich_table


def timing_table(trace: AlignmentTrace, words: list[str] | None = None) -> Table:
    rich_table = Table(title="Word timing (ms)")
    for column in ("Word", "Start", "End", "Latency", "Pause", "Flags"):
        rich_table.add_column(column)

    for w in trace.words:
        label = words[w.word_index] if words and w.word_index < len(words) else str(w.word_index)
        flags = ", ".join(w.flags)
        if w.is_hesitation:
            flags = f"[yellow]{flags}[/yellow]"
        rich_table.add_row(
            label,
            f"{w.t_start:.0f}",
            f"{w.t_end:.0f}",
            f"{w.latency_to_word:.0f}",
            f"{w.inter_pause_prev:.0f}",
            flags,
        )
    return rich_table


def explain_attempt_for_terminal(
    expected: str,
    recognized: str,
    report: MistakeReport,
    trace: AlignmentTrace | None = None,
    console: Console | None = None,
):
    console = console if console is not None else Console()

    console.print(diff_text(expected, recognized))
    console.print(mistakes_table(report, word_groups(expected, recognized)))
    for mistake in report.mistakes:
        console.print(f"- {mistake}")
    for suggestion in report.suggestions:
        console.print(f"[cyan]{suggestion}[/cyan]")

    if trace is not None:
        console.print(timing_table(trace, expected.split()))
