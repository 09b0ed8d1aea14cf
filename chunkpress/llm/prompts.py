"""
Prompt text for the two completion passes.

The first (preprocessor) pass sees every part of every file and answers
with the part ids worth editing.  The second (editor) pass sees only those
parts and answers with replacement parts, new files and free text.
"""

_INPUT_LAYOUT = {
    "xml": (
        "Code files arrive as:\n"
        "<file path=\"path/to/file\" parts=\"TOTAL\">"
        "<part id=\"1\"><![CDATA[...]]></part>...</file>\n"
        "Each part is a fixed-size group of consecutive lines, numbered from 1."
    ),
    "json": (
        "Code files arrive as a JSON array:\n"
        "[{\"file_path\": \"path/to/file\", \"parts\": "
        "[{\"part_id\": 1, \"content\": \"...\"}]}]\n"
        "Each part is a fixed-size group of consecutive lines, numbered from 1."
    ),
}

_PREPROCESSOR_FORMAT = {
    "xml": (
        "Respond in this format only:\n"
        "<parts_to_edit><file path=\"path/to/file\" parts=\"TOTAL\">"
        "ID,ID,ID</file></parts_to_edit>"
        "<preprocessor_prompt>why these parts were kept and others "
        "excluded</preprocessor_prompt>"
    ),
    "json": (
        "Respond with a single JSON object only:\n"
        "{\"parts_to_edit\": [{\"file_path\": \"path/to/file\", "
        "\"parts\": [ID, ID]}], "
        "\"preprocessor_prompt\": \"why these parts were kept and others excluded\"}"
    ),
}

_EDITOR_FORMAT = {
    "xml": (
        "Respond in this format only:\n"
        "<file path=\"path/to/file.ext\" parts=\"TOTAL\">"
        "<part id=\"ID\"><![CDATA[full updated part]]></part></file>\n"
        "<new_file path=\"path/to/new.ext\"><![CDATA[full content]]></new_file>\n"
        "<response><![CDATA[anything that is not code]]></response>"
    ),
    "json": (
        "Respond with a single JSON object only:\n"
        "{\"updated_files\": [{\"file_path\": \"path/to/file.ext\", "
        "\"parts\": [{\"part_id\": ID, \"content\": \"full updated part\"}]}], "
        "\"new_files\": [{\"file_path\": \"path/to/new.ext\", "
        "\"content\": \"full content\"}], "
        "\"response\": \"anything that is not code\"}"
    ),
}

PREPROCESSOR_SYSTEM_PROMPT = """\
You select which parts of the given code files must change to satisfy the
user's request. You do not edit code; another model will edit exactly the
parts you select, so include every part the change touches and nothing else.

{layout}

{response_format}
"""

CODE_EDITOR_SYSTEM_PROMPT = """\
You edit source code. Your answer is applied to the codebase automatically,
part by part, so it must be complete and syntactically valid.

{layout}

Rules:
- Send every changed part back in full, keeping its part id, even if only
  one line changed. Never renumber parts and never merge two parts.
- Do not send parts that did not change.
- To create a file, send it whole as a new file.
- Do not add or remove comments unless the code is unclear.
- Put any explanation in the free-text field; text outside the format is
  ignored.

{response_format}
"""


def _user_message(user_prompt: str, code_files: str, reminder: str,
                  console_output: str = "") -> str:
    parts = [
        f"<code_files>{code_files}</code_files>",
        f"<user_prompt>{user_prompt}</user_prompt>",
    ]
    if console_output:
        parts.append(
            f"<previous_console_output>\n{console_output}\n</previous_console_output>")
    parts.append(f"<important>{reminder}</important>")
    return "\n".join(parts)


def _system_message(template: str, user_system_prompt: str, fmt: str,
                    response_format: dict) -> str:
    system = template.format(layout=_INPUT_LAYOUT[fmt],
                             response_format=response_format[fmt])
    return (f"<system_prompt>{system}</system_prompt>\n"
            f"<user_system_prompt>{user_system_prompt}</user_system_prompt>")


def build_preprocessor_messages(user_system_prompt: str, user_prompt: str,
                                code_files: str, fmt: str = "xml",
                                console_output: str = "") -> tuple[str, str]:
    """Return ``(system, user)`` messages for the part-selection pass."""
    return (
        _system_message(PREPROCESSOR_SYSTEM_PROMPT, user_system_prompt, fmt,
                        _PREPROCESSOR_FORMAT),
        _user_message(user_prompt, code_files, _PREPROCESSOR_FORMAT[fmt],
                      console_output),
    )


def build_editor_messages(user_system_prompt: str, user_prompt: str,
                          code_files: str, fmt: str = "xml",
                          console_output: str = "") -> tuple[str, str]:
    """Return ``(system, user)`` messages for the editing pass."""
    return (
        _system_message(CODE_EDITOR_SYSTEM_PROMPT, user_system_prompt, fmt,
                        _EDITOR_FORMAT),
        _user_message(user_prompt, code_files, _EDITOR_FORMAT[fmt],
                      console_output),
    )
