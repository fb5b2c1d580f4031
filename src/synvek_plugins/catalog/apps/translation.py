# Translation mini-app.
#
# Translates SAMPLE_TEXT into the host language through chat completion and
# translates again whenever the host language changes.

SAMPLE_TEXT = "Plugins run in their own sandbox and talk to the host through messages."
SYSTEM_PROMPT = (
    "Please use language and style: {language} and translate user inputs. "
    "Please translate precisely, no extra comments. /no_thinking"
)

state = {
    "language": "en-US",
    "pending": None,
    "translation": None,
}


def translate(text):
    system_prompt = SYSTEM_PROMPT.format(language=state["language"])
    state["pending"] = bridge.request(
        "CHAT_COMPLETION_REQUEST",
        {
            "system_prompts": [{"type": "text", "text": system_prompt}],
            "user_prompts": [{"type": "text", "text": text}],
            "temperature": 0.8,
            "topN": 0.8,
        },
    )


def on_init(envelope):
    translate(SAMPLE_TEXT)


def on_language_changed(envelope):
    state["language"] = envelope["payload"]["language"]
    translate(SAMPLE_TEXT)


def on_completion(envelope):
    # Only the latest request matters; older answers are superseded.
    if envelope.get("requestId") != state["pending"]:
        return
    state["pending"] = None
    result = envelope["payload"]
    if result["success"]:
        state["translation"] = result["data"]
        bridge.log("Translation complete:", result["data"])
    else:
        bridge.log("Error:", result.get("message"))


bridge.on("INIT_CONTEXT", on_init)
bridge.on("LANGUAGE_CHANGED", on_language_changed)
bridge.on("CHAT_COMPLETION_RESPONSE", on_completion)
bridge.ready()
