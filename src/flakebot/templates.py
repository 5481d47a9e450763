"""Prompt templates for the completion service.

Placeholders are written as ``{name}`` and substituted with plain string
replacement, so values containing braces (Rust source, JSON) pass through
untouched.
"""

from __future__ import annotations

import re

CRATES_TEMPLATE = (
    "Based on the user instructions, identify the necessary Rust crates. \n"
    "Respond only with a comma-separated list of binaries, such as "
    "'hello_world_tool, http_server, basic_axum_math'. \n"
    "Example: For 'simple http server with post endpoints that do basic math', respond with "
    "'hello_world_tool, http_server, basic_axum_math'. \n"
    "You must include hello_world_tool in the list as the first binary. \n"
    "Do not include descriptions or additional information. User instructions: {user_instructions}"
)

CRATE_DESCRIPTION_TEMPLATE = (
    "Based on the user instructions, generate an in depth, extensive crate description including "
    "full api documentation. \n"
    "Only return the description, do not return anything else. \n"
    "Do not include any additional information or preface your response with anything. \n"
    "Return it as a single string. \n"
    "Cargo.toml contents: {cargo_toml_contents}, \n"
    "README contents: {readme_contents}, \n"
    "src/main.rs contents: {main_rs_contents}"
)

VALIDATE_PROGRAM_TEMPLATE = (
    "Can the program as it exists right now satisfy the user instructions? \n"
    "Main.rs contents: {main_rs_contents}, \n"
    "User instructions: {user_instructions}, \n"
    "Errors from running cargo check on the most recent rewrite: {errors}, \n"
    "Respond only with a JSON object of the form "
    '{"satisfied": <true or false>, "instructions": "<changes required>"}. \n'
    "Set satisfied to true only if the program satisfies the user instructions. "
    "Otherwise set it to false and give detailed instructions on what changes need to be made "
    "to the program to satisfy the user instructions."
)

REWRITE_MAIN_RS_TEMPLATE = (
    "Rewrite the main.rs file to satisfy the user instructions, keep all the existing code and "
    "only add the minimal changes required to satisfy the user instructions. \n"
    "Main.rs contents: {main_rs_contents}, \n"
    "User instructions: {user_instructions}, \n"
    "Respond only with the rewritten main.rs file contents, keeping the original code and only "
    "adding the minimal changes required to satisfy the user instructions. "
    "You MUST write a test for any new code you add. \n"
    "Do not include any additional information or preface your response with anything, only "
    "return the new main.rs file contents."
)

ADD_DEPENDENCY_TEMPLATE = (
    "Generate a cargo add command to add all the dependencies required to run the program. \n"
    "Program contents: {main_rs_contents}, \n"
    "Example response: cargo add axum serde_json tokio reqwest \n"
    "Respond only with the `cargo add` command."
)

INTERACTION_INSTRUCTIONS_TEMPLATE = (
    "Based on tests for this main.rs file, write out interaction instructions for the user. \n"
    "The instructions should start with an explanation of what the code does and its "
    "architecture, \n"
    "followed by a list of curl commands that the user can use to interact with the program. \n"
    "Main.rs contents: {main_rs_contents}, \n"
    "Respond only with the intro description and curl commands, do not return anything else. \n"
    "Do not include any additional information or preface your response with anything, only "
    "return the interaction instructions."
)

COMMIT_MESSAGE_TEMPLATE = (
    "Generate a concise commit message of 5-7 words based on the following git diff: \n"
    "Git diff: {git_diff}, \n"
    "Respond only with the commit message, do not return anything else."
)

PR_MESSAGE_TEMPLATE = (
    "Generate a detailed pull request message based on the following git diff: \n"
    "Git diff: {git_diff}, \n"
    "Respond only with the pull request message, do not return anything else."
)

PR_TITLE_TEMPLATE = (
    "Generate a detailed pull request title of 5-7 words based on the following pull request "
    "summary: \n"
    "Pull request summary: {pr_message}, \n"
    "Respond only with the pull request title in 5-7 words, do not return anything else."
)


def render(template: str, **values: str) -> str:
    """Replace every ``{name}`` occurrence in ``template`` with ``values[name]``.

    Substitution is a single pass, so a value that itself contains a
    placeholder is inserted verbatim rather than expanded.
    """
    if not values:
        return template
    pattern = re.compile("|".join(re.escape("{" + name + "}") for name in values))
    return pattern.sub(lambda match: values[match.group(0)[1:-1]], template)
