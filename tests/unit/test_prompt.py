from heck_passage.models import ChatMessage
from heck_passage.prompt import DEFAULT_TITLE, assemble_prompt, extract_text, make_title


def _msgs(*raw: dict) -> list[ChatMessage]:
    return [ChatMessage.model_validate(m) for m in raw]


def test_assemble_prompt_roles_in_order() -> None:
    prompt = assemble_prompt(
        _msgs(
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "Hi"},
            {"role": "assistant", "content": "Hello!"},
            {"role": "user", "content": "What is SSE?"},
        )
    )
    assert prompt.text == ("[System]: Be brief.\n" "[User]: Hi\n" "[Assistant]: Hello!\n" "[User]: What is SSE?\n")
    assert prompt.last_user_text == "What is SSE?"
    assert prompt.title == "What is SSE?"


def test_multimodal_parts_keep_only_text() -> None:
    prompt = assemble_prompt(
        _msgs(
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": "Describe"},
                    {"type": "image_url", "image_url": {"url": "https://example.com/cat.png"}},
                    {"type": "text", "text": "this picture"},
                ],
            }
        )
    )
    assert prompt.text == "[User]: Describe\nthis picture\n"
    assert prompt.title == "Describe this p"


def test_empty_messages_are_skipped() -> None:
    prompt = assemble_prompt(
        _msgs(
            {"role": "system", "content": ""},
            {"role": "user", "content": None},
            {"role": "assistant", "content": [{"type": "image_url", "image_url": {"url": "x"}}]},
            {"role": "user", "content": "ok"},
        )
    )
    assert prompt.text == "[User]: ok\n"


def test_unknown_roles_are_skipped() -> None:
    prompt = assemble_prompt(_msgs({"role": "tool", "content": "result"}, {"role": "user", "content": "go"}))
    assert prompt.text == "[User]: go\n"


def test_title_defaults_without_user_message() -> None:
    prompt = assemble_prompt(_msgs({"role": "system", "content": "setup"}))
    assert prompt.last_user_text == ""
    assert prompt.title == DEFAULT_TITLE


def test_title_uses_most_recent_user_message_even_if_empty() -> None:
    prompt = assemble_prompt(_msgs({"role": "user", "content": "first"}, {"role": "user", "content": ""}))
    assert prompt.last_user_text == ""
    assert prompt.title == DEFAULT_TITLE


def test_make_title_truncates_and_flattens_newlines() -> None:
    assert make_title("line one\nline two and more") == "line one line t"
    assert make_title("a\r\nb") == "a b"
    assert make_title("") == DEFAULT_TITLE


def test_extract_text_tolerates_odd_content() -> None:
    assert extract_text(None) == ""
    assert extract_text(42) == ""
    assert extract_text([{"type": "text", "text": "a"}, {"type": "text"}, "junk"]) == "a"
    assert extract_text([]) == ""


def test_empty_message_list() -> None:
    prompt = assemble_prompt([])
    assert prompt.text == ""
    assert prompt.title == DEFAULT_TITLE
