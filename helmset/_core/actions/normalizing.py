"""
Stripping the non-deterministic noise from the tools' outputs.

The same desired state must produce byte-identical outputs for fingerprinting.
In practice, the tool's output contains lines that differ from run to run
for the reasons unrelated to the desired state:

* The repository updates are logged in the order as they finish, and they
  run concurrently, so the order of the lines is random.
* The builds with the embedded values mention the temporary files with
  the random names, both in the comments and in the ``filepath:`` fields.

These lines are dropped. Everything else is kept as is, line by line.
"""

# The concurrently finished (hence randomly ordered) repository updates.
REPO_UPDATE_PREFIX = '...Successfully got an update from the "'

# The temp file paths in `build --embed-values`.
FILEPATH_PREFIX = 'filepath:'
COMMENT_PREFIX = '#'

DEFAULT_TRUNCATION_NOTICE = '*** output truncated ***'


def normalize(output: str, *, embedded_values: bool = False) -> str:
    """
    Drop the noise lines; terminate every kept line with a newline.

    The result is stable for re-normalization: ``normalize(normalize(x)) == normalize(x)``.
    """
    kept: list[str] = []
    for line in output.splitlines():
        if line.startswith(REPO_UPDATE_PREFIX):
            continue
        if embedded_values and line.lstrip().startswith(COMMENT_PREFIX):
            continue
        if embedded_values and line.startswith(FILEPATH_PREFIX):
            continue
        kept.append(line + '\n')
    return ''.join(kept)


def truncate(text: str, max_len: int, *, notice: str = DEFAULT_TRUNCATION_NOTICE) -> str:
    """
    Cut the text at a line boundary, so that it fits into ``max_len`` with a notice.

    The notice is appended on its own line. If even the notice does not fit,
    it is cut too: the length limit is never exceeded. Non-positive limits
    disable the truncation.
    """
    if max_len <= 0 or len(text) <= max_len:
        return text

    suffix = f'{notice}\n'
    budget = max_len - len(suffix)
    if budget <= 0:
        return suffix[:max_len]

    # Only the complete lines are kept: the kept part is empty or ends with a newline.
    cut = text.rfind('\n', 0, budget)
    return text[:cut + 1] + suffix
