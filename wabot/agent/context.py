"""System prompt assembly for reply generation."""

from pathlib import Path
from typing import Any

PROMPT_FILE = "PROMPT.md"

DEFAULT_PROMPT = """Sos un asistente de ventas por WhatsApp: profesional, cordial y claro.
Tu objetivo es asesorar al cliente y guiarlo amablemente hacia la compra, sin presión.

Estilo:
- Mensajes cortos, de 4 a 6 líneas, en texto plano como un chat de WhatsApp.
- No repitas el saludo ni la bienvenida en cada mensaje.
- Si ya explicaste algo, no lo vuelvas a detallar salvo que el cliente lo pida.
- Hacé preguntas útiles para avanzar: qué producto prefiere, cuántas unidades, datos de envío.

Datos necesarios para cerrar un pedido:
- Nombre y apellido
- Producto y cantidad
- Total acordado
- Dirección, código postal y ciudad

Antes de confirmar un pedido verificá que todos los datos estén completos.
Si algún dato es dudoso, pedí la corrección con amabilidad."""

REPLY_CONTRACT = """# Formato de respuesta (obligatorio)

Devolvé SIEMPRE un único objeto JSON válido, sin texto extra ni Markdown:
{
  "text": "mensaje de WhatsApp en texto plano",
  "media": [{"url": "https://...", "caption": "opcional"}],
  "order": {
    "nombre": "Nombre Apellido",
    "producto": "nombre del producto",
    "cantidad": 2,
    "total_ars": 79800,
    "direccion": "Calle 123",
    "cp": "2000",
    "ciudad": "Rosario"
  }
}
- "media" puede omitirse o ser un array vacío.
- Incluí "order" SOLO cuando la compra está cerrada y los datos fueron confirmados."""


class PromptBuilder:
    """
    Builds the chat messages sent to the model for one turn.

    The sales prompt comes from `PROMPT.md` in the workspace when present so
    operators can edit it without touching code; the JSON reply contract is
    always appended.
    """

    def __init__(self, workspace: Path):
        self.workspace = workspace

    @property
    def prompt_path(self) -> Path:
        return self.workspace / PROMPT_FILE

    def load_prompt(self) -> str:
        path = self.prompt_path
        if path.exists():
            try:
                content = path.read_text(encoding="utf-8").strip()
            except OSError:
                content = ""
            if content:
                return content
        return DEFAULT_PROMPT

    def build_system_prompt(self, contact_key: str, history_text: str = "") -> str:
        parts = [self.load_prompt(), REPLY_CONTRACT]
        if history_text.strip():
            parts.append(f"# Conversación reciente con {contact_key}\n\n{history_text.strip()}")
        return "\n\n---\n\n".join(parts)

    def build_messages(
        self,
        combined_text: str,
        contact_key: str,
        history_text: str = "",
    ) -> list[dict[str, Any]]:
        return [
            {"role": "system", "content": self.build_system_prompt(contact_key, history_text)},
            {"role": "user", "content": combined_text},
        ]


def render_history(turns: list[dict[str, Any]]) -> str:
    """Render stored turns as plain dialogue lines, oldest first."""
    lines: list[str] = []
    for turn in turns:
        user_text = str(turn.get("userText", "") or "").strip()
        ai_text = str(turn.get("aiText", "") or "").strip()
        if user_text:
            lines.append(f"Cliente: {user_text}")
        if ai_text:
            lines.append(f"Asistente: {ai_text}")
    return "\n".join(lines)
