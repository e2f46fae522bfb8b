"""Optional job classification.

A job is optional when its failure should not count against the health of
the pipeline: either the step is marked soft_fail, or its name or step key
says so. The name rules are a plain list of patterns so they can be tested
and extended without touching the aggregator.

Matching is substring-based and case-insensitive: "perf-benchmark" and
"Experimental Suite" both qualify.
"""

import re

from schemas.build import JobRecord

OPTIONAL_JOB_PATTERNS: tuple[re.Pattern, ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"optional",
        r"allow.?fail",
        r"non.?blocking",
        r"\(optional\)",
        r"\[optional\]",
        r"experimental",
        r"beta",
        r"benchmark",
        r"perf",
    )
)


def is_optional(job: JobRecord, patterns: tuple[re.Pattern, ...] = OPTIONAL_JOB_PATTERNS) -> bool:
    """Return True if the job is non-blocking.

    Args:
        job: The job to classify.
        patterns: Compiled patterns to search the name and step key with.
            Defaults to OPTIONAL_JOB_PATTERNS.

    Returns:
        True if soft_failed is set or any pattern matches the name or the
        step key.
    """
    if job.soft_failed is True:
        return True

    candidates = [text for text in (job.name, job.step_key) if text]
    return any(pattern.search(text) for pattern in patterns for text in candidates)
