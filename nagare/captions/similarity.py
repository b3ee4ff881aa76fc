from __future__ import annotations


def lcs_length(a: str, b: str) -> int:
    """
    Length of the longest common subsequence of a and b.
    Two rolling rows keep memory at O(min(len(a), len(b))).
    """
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return 0
    prev = [0] * (len(b) + 1)
    curr = [0] * (len(b) + 1)
    for ca in a:
        for j, cb in enumerate(b, start=1):
            if ca == cb:
                curr[j] = prev[j - 1] + 1
            else:
                curr[j] = max(prev[j], curr[j - 1])
        prev, curr = curr, prev
    return prev[len(b)]


def similarity_ratio(a: str, b: str) -> float:
    """Case-insensitive LCS length over the longer length. 0.0 if either side is empty."""
    if not a or not b:
        return 0.0
    la, lb = a.lower(), b.lower()
    return lcs_length(la, lb) / float(max(len(la), len(lb)))
