from __future__ import annotations

import json
from html import escape

from .settings import LLM_URL_KEY, MODEL_NAME_KEY

HELP_LINES = [
    "/config <url>   set the LLM endpoint, e.g. /config http://localhost:8080/v1/chat/completions",
    "/model <name>   set the model name sent with each request",
    "/clear          erase the conversation history",
    "/help           show this list",
]

STYLE = """
html, body { margin: 0; height: 100%; background: #000; }
body { color: #33ff66; font: 14px/1.45 "DejaVu Sans Mono", Menlo, Consolas, monospace; display: flex; flex-direction: column; }
header { display: flex; justify-content: space-between; padding: 6px 16px; border-bottom: 1px solid rgba(51,255,102,.25);
         background: rgba(51,255,102,.05); text-transform: uppercase; letter-spacing: .08em; font-size: 12px; }
header .busy { color: #ffcc33; }
#screen { flex: 1; overflow-y: auto; padding: 16px 24px; }
.msg { white-space: pre-wrap; word-break: break-word; margin: 0 0 10px; }
.msg .who { font-weight: bold; margin-right: 8px; user-select: none; }
.msg.user .who { color: #66ccff; }
.msg.assistant .who { color: #33ff66; }
.msg.system, .msg.local { color: rgba(51,255,102,.6); }
.msg.error { color: #ff6666; }
form { display: flex; gap: 10px; margin-top: 12px; }
form label { font-weight: bold; user-select: none; }
form input { flex: 1; background: transparent; border: none; outline: none; color: inherit; font: inherit; caret-color: #33ff66; }
"""

SCRIPT = """
const HELP = __HELP__;
const URL_KEY = __URL_KEY__;
const MODEL_KEY = __MODEL_KEY__;
const screen = document.getElementById("screen");
const log = document.getElementById("log");
const input = document.getElementById("prompt");
const target = document.getElementById("target");
const state = document.getElementById("state");
const recalled = [];
let recallIndex = -1;
let busy = false;

function line(role, text, extra) {
  const el = document.createElement("div");
  el.className = "msg " + role + (extra ? " " + extra : "");
  const who = document.createElement("span");
  who.className = "who";
  who.textContent = role === "user" ? "user@llama:~$" : role === "assistant" ? "llama>" : "#";
  el.appendChild(who);
  el.appendChild(document.createTextNode(text));
  log.appendChild(el);
  screen.scrollTop = screen.scrollHeight;
}

function setBusy(value) {
  busy = value;
  state.textContent = value ? "PROCESSING" : "IDLE";
  state.className = value ? "busy" : "";
}

async function api(method, path, body) {
  const options = { method: method, headers: {} };
  if (body !== undefined) {
    options.headers["Content-Type"] = "application/json";
    options.body = JSON.stringify(body);
  }
  const response = await fetch(path, options);
  if (response.status === 204) return null;
  const data = await response.json().catch(() => null);
  if (!response.ok) {
    const error = new Error((data && data.message) || ("HTTP " + response.status));
    error.status = response.status;
    throw error;
  }
  return data;
}

async function loadHistory() {
  log.textContent = "";
  const messages = await api("GET", "/api/chat/history");
  messages.forEach((m) => line(m.role, m.content));
}

async function loadTarget() {
  try {
    const setting = await api("GET", "/api/settings/" + URL_KEY);
    target.textContent = setting.value;
  } catch (err) {
    target.textContent = "UNSET";
  }
}

async function command(text) {
  const parts = text.trim().split(/\\s+/);
  const name = parts[0].toLowerCase();
  const args = parts.slice(1);
  if (name === "/clear") {
    await api("DELETE", "/api/chat/history");
    log.textContent = "";
    return true;
  }
  if (name === "/config" || name === "/model") {
    if (!args.length) {
      line("local", "usage: " + name + (name === "/config" ? " <url>" : " <name>"));
      return true;
    }
    const key = name === "/config" ? URL_KEY : MODEL_KEY;
    const setting = await api("PUT", "/api/settings/" + key, { value: args[0] });
    line("local", key + " set to " + setting.value);
    if (key === URL_KEY) target.textContent = setting.value;
    return true;
  }
  if (name === "/help") {
    HELP.forEach((entry) => line("local", entry));
    return true;
  }
  return false;
}

document.getElementById("input-form").addEventListener("submit", async (event) => {
  event.preventDefault();
  const text = input.value;
  if (!text.trim() || busy) return;
  input.value = "";
  recalled.push(text);
  recallIndex = -1;
  setBusy(true);
  try {
    if (!(await command(text))) {
      line("user", text);
      const reply = await api("POST", "/api/chat", { message: text });
      line(reply.role, reply.content);
    }
  } catch (err) {
    line("local", "error: " + err.message, "error");
  } finally {
    setBusy(false);
    input.focus();
  }
});

input.addEventListener("keydown", (event) => {
  if (!recalled.length) return;
  if (event.key === "ArrowUp") {
    event.preventDefault();
    recallIndex = recallIndex === -1 ? recalled.length - 1 : Math.max(0, recallIndex - 1);
    input.value = recalled[recallIndex];
  } else if (event.key === "ArrowDown" && recallIndex !== -1) {
    event.preventDefault();
    if (recallIndex === recalled.length - 1) {
      recallIndex = -1;
      input.value = "";
    } else {
      recallIndex += 1;
      input.value = recalled[recallIndex];
    }
  }
});

window.addEventListener("keydown", () => input.focus());
loadHistory().catch((err) => line("local", "error: " + err.message, "error"));
loadTarget();
"""


def render_terminal_page(title: str = "LlamaTerm") -> str:
    script = (
        SCRIPT.replace("__HELP__", json.dumps(HELP_LINES))
        .replace("__URL_KEY__", json.dumps(LLM_URL_KEY))
        .replace("__MODEL_KEY__", json.dumps(MODEL_NAME_KEY))
    )
    safe_title = escape(title)
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>{safe_title}</title>
<style>{STYLE}</style>
</head>
<body>
<header>
  <span><strong>{safe_title} v1.0</strong></span>
  <span>TARGET: <span id="target">UNSET</span> &middot; <span id="state">IDLE</span></span>
</header>
<main id="screen">
  <div id="log"></div>
  <form id="input-form" autocomplete="off">
    <label for="prompt">user@llama:~$</label>
    <input id="prompt" name="message" type="text" spellcheck="false" autofocus>
  </form>
</main>
<script>{script}</script>
</body>
</html>
"""
