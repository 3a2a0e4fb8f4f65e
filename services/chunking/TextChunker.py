"""Adaptive text segmentation for embedding.

Short texts stay in one piece. Longer texts are split into segments that
carry ``overlap_size`` tokens of the previous segment plus up to
``target_size`` tokens of new text. Cuts prefer paragraph boundaries, then
sentence boundaries, then word boundaries, and only then a hard cut.

Token counts are estimated from character length (``chars_per_token``), so
segmentation is deterministic and needs no tokenizer.
"""

import math
import re

from shared.models.chunk import TextSegment
from shared.models.config import ChunkerOptions

PARAGRAPH_BREAK = re.compile(r"\n[ \t]*\n\s*")
SENTENCE_END = re.compile(r"[.!?]+[\"'”’)\]]*\s+")
WORD_BREAK = re.compile(r"\s+")

# a period after one of these does not end a sentence
ABBREVIATIONS = frozenset({
    "dr.", "mr.", "mrs.", "ms.", "prof.", "sr.", "jr.", "st.",
    "ph.d.", "m.d.", "b.a.", "m.a.", "i.e.", "e.g.", "etc.", "vs.", "cf.",
})


def estimate_tokens(text: str, chars_per_token: int = 4) -> int:
    """Estimate the token count of a text from its length."""
    return math.ceil(len(text) / chars_per_token)


class TextChunker:
    """Splits entity text into bounded, overlapping segments."""

    def __init__(self, options: ChunkerOptions | None = None) -> None:
        self.options = options or ChunkerOptions()

    ##########################################
    ################# CORE ###################
    ##########################################

    def chunk(self, text: str, options: ChunkerOptions | None = None) -> list[TextSegment]:
        """Split a text into ordered segments.

        Args:
            text (str): The source text.
            options (ChunkerOptions | None): Overrides the chunker's default options.

        Returns:
            list[TextSegment]: Zero segments for empty or whitespace-only text,
                exactly one segment (the unchanged text) below the single-chunk
                threshold, otherwise overlapping segments whose overlap-free
                concatenation equals the text.
        """
        opts = options or self.options
        if not text or not text.strip():
            return []

        if estimate_tokens(text, opts.chars_per_token) < opts.single_chunk_threshold:
            return [self._make_segment(text, 0, 0, len(text), opts)]

        spans = self._split_spans(text, opts)
        return [self._make_segment(text, index, start, end, opts) for index, (start, end) in enumerate(spans)]

    ##########################################
    ############### SPLITTING ################
    ##########################################

    def _split_spans(self, text: str, opts: ChunkerOptions) -> list[tuple[int, int]]:
        cpt = opts.chars_per_token
        target_chars = opts.target_size * cpt
        overlap_chars = opts.overlap_size * cpt
        min_chars = opts.min_size * cpt
        max_chars = opts.max_size * cpt
        # how far an overlap start may move back to land on a word start
        slack = max(0, min(overlap_chars // 4, max_chars - target_chars - overlap_chars, min_chars - overlap_chars - 1))
        text_len = len(text)

        spans: list[tuple[int, int]] = []
        prev_end = 0
        while prev_end < text_len:
            start = self._overlap_start(text, prev_end, overlap_chars, slack) if spans else 0
            if text_len - prev_end <= target_chars:
                spans.append((start, text_len))
                break
            lo = max(start + min_chars, prev_end + 1)
            hi = prev_end + target_chars
            cut = self._find_cut(text, lo, hi)
            spans.append((start, cut))
            prev_end = cut

        # a final remainder below min_size is folded into the previous segment
        if len(spans) > 1:
            last_start, last_end = spans[-1]
            prev_start = spans[-2][0]
            too_small = estimate_tokens(text[last_start:last_end], cpt) < opts.min_size
            if too_small and last_end - prev_start <= max_chars:
                spans[-2] = (prev_start, last_end)
                spans.pop()
        return spans

    def _overlap_start(self, text: str, prev_end: int, overlap_chars: int, slack: int) -> int:
        start = max(0, prev_end - overlap_chars)
        if start == 0 or text[start - 1].isspace():
            return start
        # move back (never forward) so the overlap stays >= overlap_chars
        window_lo = max(0, start - slack)
        last_space = -1
        for match in WORD_BREAK.finditer(text, window_lo, start):
            last_space = match.end()
        return last_space if last_space > 0 else start

    def _find_cut(self, text: str, lo: int, hi: int) -> int:
        """Return the cut offset in [lo, hi]: paragraph, sentence, word, or hard cut."""
        cut = self._last_boundary(PARAGRAPH_BREAK, text, lo, hi)
        if cut is not None:
            return cut
        cut = self._last_sentence_end(text, lo, hi)
        if cut is not None:
            return cut
        cut = self._last_boundary(WORD_BREAK, text, lo, hi)
        if cut is not None:
            return cut
        return hi

    @staticmethod
    def _last_boundary(pattern: re.Pattern, text: str, lo: int, hi: int) -> int | None:
        last = None
        for match in pattern.finditer(text, lo, hi):
            if match.end() >= lo:
                last = match.end()
        return last

    @staticmethod
    def _last_sentence_end(text: str, lo: int, hi: int) -> int | None:
        last = None
        for match in SENTENCE_END.finditer(text, lo, hi):
            word_start = max(text.rfind(" ", 0, match.start()), text.rfind("\n", 0, match.start())) + 1
            word = text[word_start:match.start() + 1].lower()
            if word in ABBREVIATIONS:
                continue
            last = match.end()
        return last

    @staticmethod
    def _make_segment(text: str, index: int, start: int, end: int, opts: ChunkerOptions) -> TextSegment:
        segment_text = text[start:end]
        return TextSegment(
            chunk_index=index,
            text=segment_text,
            token_count=estimate_tokens(segment_text, opts.chars_per_token),
            start_char=start,
            end_char=end,
        )


def reassemble(segments: list[TextSegment]) -> str:
    """Concatenate segment texts with the overlaps removed."""
    parts: list[str] = []
    covered = 0
    for segment in segments:
        skip = max(0, covered - segment.start_char)
        parts.append(segment.text[skip:])
        covered = max(covered, segment.end_char)
    return "".join(parts)
