"""
Internationalization (i18n) support for Ojo.

Holds everything that depends on the target language: the scene
description prompt sent to the vision service, status labels shown in the
terminal, spoken announcements and the voice hints for TTS engines.

Usage:
    from ojo.i18n import get_messages

    msg = get_messages("es")
    print(msg.assistance_started)  # "Iniciando asistencia visual"
"""

from dataclasses import dataclass, replace
from typing import Dict, Optional

DEFAULT_LANGUAGE = "es"


@dataclass(frozen=True)
class Messages:
    """All prompt, UI and TTS strings for one language."""

    language_name: str = "English"

    # Vision prompt
    system_prompt: str = (
        "You are a helpful assistant for a blind person.\n"
        "Your task is to analyze the image and describe the scene concisely "
        "and usefully so that someone can find their way around.\n\n"
        "Strict rules:\n"
        "1. Identify the main objects (chairs, tables, people, doors).\n"
        "2. Describe relative position when it matters for navigation "
        "(e.g. \"chair to your right\", \"path ahead is clear\").\n"
        "3. Mention immediate obstacles or potential hazards.\n"
        "4. Do not invent details. Be direct.\n"
        "5. Keep the answer short (at most 2 sentences) for fast speech synthesis.\n"
        "6. ALWAYS answer in {language}.\n\n"
        "Example of the desired output: \"There is a person standing in front of you. "
        "To your right there is an empty desk. The path ahead looks clear.\""
    )
    user_prompt: str = "Identify objects and describe the scene for navigation."
    json_instructions: str = (
        "Reply only with a JSON object with the keys \"description\" (string) "
        "and \"detectedObjects\" (array of strings)."
    )
    schema_description: str = "Concise description for navigation and orientation."
    schema_objects: str = "List of detected objects."

    # Status labels
    status_idle: str = "READY"
    status_warmup: str = "WAITING..."
    status_capturing: str = "CAPTURING..."
    status_analyzing: str = "PROCESSING..."
    status_speaking: str = "SPEAKING..."
    status_error: str = "ERROR"

    # Host
    title: str = "Electronic Eye"
    initial_hint: str = "Press ENTER to start the assistance."
    controls_hint: str = "ENTER: start/stop   q: quit"
    detected_header: str = "Detected Surroundings"
    assistance_started: str = "Starting visual assistance"
    assistance_stopped: str = "Assistance stopped"
    camera_error: str = "Could not access the camera. Check the permissions."

    # TTS voices
    espeak_voice: str = "en"
    say_voice: str = ""

    def format_system_prompt(self) -> str:
        return self.system_prompt.format(language=self.language_name)

    def status_label(self, state) -> str:
        """Label for a CycleState (or its string value)."""
        value = getattr(state, "value", state)
        return {
            "idle": self.status_idle,
            "warmup": self.status_warmup,
            "capturing": self.status_capturing,
            "analyzing": self.status_analyzing,
            "speaking": self.status_speaking,
            "error_pause": self.status_error,
        }.get(value, self.status_warmup)


TRANSLATIONS: Dict[str, Messages] = {
    "en": Messages(),

    "es": Messages(
        language_name="Español",
        system_prompt=(
            "Eres un asistente útil para una persona invidente.\n"
            "Tu misión es analizar la imagen y describir la escena de forma concisa "
            "y útil para que alguien pueda orientarse.\n\n"
            "Reglas estrictas:\n"
            "1. Identifica los objetos principales (sillas, mesas, personas, puertas).\n"
            "2. Describe la posición relativa si es relevante para la navegación "
            "(ej: \"silla a tu derecha\", \"camino despejado\").\n"
            "3. Menciona obstáculos inmediatos o peligros potenciales.\n"
            "4. No inventes detalles. Sé directo.\n"
            "5. Mantén la respuesta breve (máximo 2 frases) para una rápida síntesis de voz.\n"
            "6. Responde SIEMPRE en {language}.\n\n"
            "Ejemplo de salida deseada: \"Hay una persona parada frente a ti. "
            "A tu derecha hay un escritorio vacío. El camino hacia adelante parece despejado.\""
        ),
        user_prompt="Identifica objetos y describe la escena para navegación.",
        json_instructions=(
            "Responde solo con un objeto JSON con las claves \"description\" (texto) "
            "y \"detectedObjects\" (lista de textos)."
        ),
        schema_description="Descripción concisa para navegación y orientación.",
        schema_objects="Lista de objetos detectados.",
        status_idle="LISTO",
        status_warmup="ESPERANDO...",
        status_capturing="CAPTURANDO...",
        status_analyzing="PROCESANDO...",
        status_speaking="HABLANDO...",
        status_error="ERROR",
        title="Ojo Electrónico",
        initial_hint="Pulse INTRO para comenzar la asistencia.",
        controls_hint="INTRO: iniciar/detener   q: salir",
        detected_header="Entorno Detectado",
        assistance_started="Iniciando asistencia visual",
        assistance_stopped="Asistencia detenida",
        camera_error="No se pudo acceder a la cámara. Verifique los permisos.",
        espeak_voice="es",
        say_voice="Monica",
    ),
}


def get_messages(lang: Optional[str] = None) -> Messages:
    """Get messages for a language code such as ``es`` or ``es-ES``."""
    lang = (lang or DEFAULT_LANGUAGE).lower()
    if lang in TRANSLATIONS:
        return TRANSLATIONS[lang]
    base = lang.split("-")[0].split("_")[0]
    if base in TRANSLATIONS:
        return TRANSLATIONS[base]
    # Unknown language: English UI, but ask for answers in that language
    return replace(TRANSLATIONS["en"], language_name=lang, espeak_voice=base)


def supported_languages():
    return sorted(TRANSLATIONS.keys())
