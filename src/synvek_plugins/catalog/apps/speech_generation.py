# Speech Generation mini-app.
#
# Runs inside the guest with `bridge` injected. Once the host hands over its
# context the app asks for the greeting to be spoken and keeps the audio
# data url it gets back.

GREETING = "Hello {name}, welcome to Synvek."

state = {
    "theme": "light",
    "language": None,
    "pending": None,
    "audio": None,
}


def generate_speech(text):
    if state["pending"] is not None:
        bridge.log("Speech generation already in progress")
        return
    state["pending"] = bridge.request("SPEECH_GENERATION_REQUEST", {"text": text})


def on_init(envelope):
    context = envelope["payload"]
    state["theme"] = context["theme"]
    generate_speech(GREETING.format(name=context["user"]["name"]))


def on_theme_changed(envelope):
    state["theme"] = envelope["payload"]["theme"]
    bridge.log("Theme is now", state["theme"])


def on_language_changed(envelope):
    state["language"] = envelope["payload"]["language"]


def on_speech(envelope):
    if envelope.get("requestId") != state["pending"]:
        return
    state["pending"] = None
    result = envelope["payload"]
    if result["success"]:
        state["audio"] = result["data"]
        bridge.log("Audio generated:", len(result["data"] or ""), "bytes")
    else:
        bridge.log("Error:", result.get("message"))


bridge.on("INIT_CONTEXT", on_init)
bridge.on("THEME_CHANGED", on_theme_changed)
bridge.on("LANGUAGE_CHANGED", on_language_changed)
bridge.on("SPEECH_GENERATION_RESPONSE", on_speech)
bridge.ready()
