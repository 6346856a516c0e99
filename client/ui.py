import tkinter as tk
from tkinter import ttk, filedialog, messagebox, simpledialog
import datetime, io
import emoji
from typing import Dict, Any, Callable, List, Optional, Set
from PIL import Image, ImageTk, UnidentifiedImageError

from common.messages import Conversation, Message, MessageType, UploadedFile
from client.optimistic import MessageReconciler, merge_view, SENDING, FAILED
from client.timeline import timestamp_labels
from client.download import ImageBatchDownload, build_archive, selected_images, single_image_name

THUMB_SIZE = (180, 140)
EMOJI_CODES = [
    ":grinning:", ":smiley:", ":smile:", ":grin:", ":sweat_smile:", ":joy:", ":wink:", ":blush:",
    ":heart_eyes:", ":yum:", ":stuck_out_tongue:", ":sunglasses:", ":thinking:", ":neutral_face:",
    ":smirk:", ":roll_eyes:", ":pensive:", ":sleepy:", ":cry:", ":sob:", ":scream:", ":angry:",
    ":clap:", ":raised_hands:", ":wave:", ":thumbs_up:", ":thumbs_down:", ":ok_hand:", ":pray:",
    ":muscle:", ":heart:", ":blue_heart:", ":sparkles:", ":fire:", ":star:", ":tada:", ":rocket:",
]


def format_size(size_bytes: Optional[int]) -> str:
    ''' Format file size to B, KB, MB '''
    if size_bytes is None:
        return ""
    if size_bytes < 1024:
        return f"{size_bytes} B"
    if size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    return f"{size_bytes / (1024 * 1024):.1f} MB"


def default_chat_title() -> str:
    return datetime.datetime.now().strftime("%Y-%m-%d %H:%M")


class ChatUI(tk.Tk):
    '''
    Main chat window: conversation list on the left, message view in the
    middle, compose bar at the bottom.

    All state lives on the Tk thread. Network callbacks arrive on the
    receive thread and are re-posted with after(0, ...) through _ui().
    '''
    def __init__(self, username: str, net):
        super().__init__()
        self.title("Chatroom")
        self.geometry("1000x640")
        self.username = username
        self.net = net

        self.conversations: List[Conversation] = []
        self.active: Optional[str] = None
        self.server_messages: Dict[str, List[Message]] = {}   # conversation id -> confirmed messages
        self.visible: List[Message] = []
        self.reconciler = MessageReconciler(self._transport, on_change=self.render_messages)

        self.selecting = False
        self.selected_ids: Set[str] = set()
        self.downloading = False
        self.thumbnails: Dict[str, ImageTk.PhotoImage] = {}   # url -> thumbnail, keeps images alive
        self._thumb_requests: Set[str] = set()

        self._build_layout()

        # NOW attach the notice handler - this will flush any backlogged notices
        self.net.on_message = self._ui(self._on_notice)
        self.refresh_conversations()

    # ---------- threading ----------
    def _ui(self, fn: Callable[..., None]) -> Callable[..., None]:
        ''' Wrap a callback so it runs on the Tk event loop '''
        def post(*args):
            try:
                self.after(0, lambda: fn(*args))
            except (RuntimeError, tk.TclError):
                pass  # window already destroyed; the result is discarded
        return post

    # ---------- layout ----------
    def _build_layout(self):
        self.columnconfigure(0, weight=0, minsize=220)
        self.columnconfigure(1, weight=1)
        self.rowconfigure(1, weight=1)

        header = tk.Label(self, text=f"Chatroom  |  User: {self.username}", bg="#a1ecf7",
                          font=("Segoe UI", 16, "bold"))
        header.grid(row=0, column=0, columnspan=2, sticky="ew", pady=(4, 6))

        # conversation sidebar
        side = ttk.Frame(self)
        side.grid(row=1, column=0, rowspan=2, sticky="nsew", padx=(8, 4))
        side.rowconfigure(1, weight=1)
        side.columnconfigure(0, weight=1)
        ttk.Label(side, text="CHATS", background="#a1ecf7", anchor="center",
                  font=("Segoe UI", 10, "bold")).grid(row=0, column=0, sticky="ew")
        self.conv_list = tk.Listbox(side, activestyle="none", exportselection=False)
        self.conv_list.grid(row=1, column=0, sticky="nsew", pady=4)
        self.conv_list.bind("<<ListboxSelect>>", lambda e: self._on_conversation_click())
        buttons = ttk.Frame(side)
        buttons.grid(row=2, column=0, sticky="ew")
        ttk.Button(buttons, text="New", command=self.create_conversation).pack(side="left", expand=True, fill="x")
        ttk.Button(buttons, text="Rename", command=self.rename_conversation).pack(side="left", expand=True, fill="x")
        ttk.Button(buttons, text="Delete", command=self.delete_conversation).pack(side="left", expand=True, fill="x")

        # message area with selection toolbar
        main = ttk.Frame(self)
        main.grid(row=1, column=1, sticky="nsew", padx=(4, 8))
        main.rowconfigure(1, weight=1)
        main.columnconfigure(0, weight=1)

        bar = ttk.Frame(main)
        bar.grid(row=0, column=0, columnspan=2, sticky="ew", pady=(0, 4))
        self.select_btn = ttk.Button(bar, text="Select", command=self.toggle_selecting)
        self.select_btn.pack(side="left")
        self.delete_sel_btn = ttk.Button(bar, text="Delete selected", command=self.delete_selected)
        self.download_btn = ttk.Button(bar, text="Download images", command=self.download_selected_images)
        self.selection_label = ttk.Label(bar, text="")
        self.status = ttk.Label(bar, text="", foreground="gray")
        self.status.pack(side="right")

        self.text = tk.Text(main, state="disabled", wrap="word")
        self.text.grid(row=1, column=0, sticky="nsew")
        sb = ttk.Scrollbar(main, orient="vertical", command=self.text.yview)
        sb.grid(row=1, column=1, sticky="ns")
        self.text.configure(yscrollcommand=sb.set)
        self.text.tag_config("label", foreground="gray", justify="center")
        self.text.tag_config("mine", foreground="#2a64cb")
        self.text.tag_config("sending", foreground="gray")
        self.text.tag_config("failed", foreground="#c62828")
        self.text.tag_config("link", underline=True, foreground="#d06b00")
        self.text.tag_config("file", foreground="#FF6B35", font=("Segoe UI", 10, "bold"))

        # compose area
        compose = ttk.Frame(self)
        compose.grid(row=2, column=1, sticky="ew", padx=8, pady=8)
        compose.columnconfigure(0, weight=1)
        self.entry = ttk.Entry(compose)
        self.entry.grid(row=0, column=0, sticky="ew", ipady=6)
        self.entry.bind("<Return>", lambda e: self.send_text())
        ttk.Button(compose, text="😊", width=3, command=self.open_emoji_picker).grid(row=0, column=1, padx=4)
        ttk.Button(compose, text="📎", width=3, command=self.send_files).grid(row=0, column=2, padx=4)
        ttk.Button(compose, text="Send ➤", command=self.send_text, width=12).grid(row=0, column=3, padx=4, ipady=8)

        # Prefer a font with colored emoji on Windows
        try:
            emoji_font = ("Segoe UI Emoji", 11)
            self.entry.configure(font=emoji_font)
            self.text.configure(font=emoji_font)
        except tk.TclError:
            pass

    # ---------- server notices ----------
    def _on_notice(self, env: Dict[str, Any]):
        t = env.get("type")
        payload = env.get("payload") or {}
        if t == "system":
            self.status.configure(text=payload.get("text", ""))
        elif t == "changed":
            cid = payload.get("conversationId")
            if cid == self.active:
                self.refresh_messages()
            self.refresh_conversations()
        elif t == "error":
            print(f"[CLIENT DEBUG] server error: {payload.get('code')}")

    # ---------- conversations ----------
    def refresh_conversations(self):
        def done(data):
            self.conversations = [Conversation.from_dict(c) for c in data]
            self._render_conversations()
        self.net.call("conversation.list", {}, self._ui(done),
                      self._ui(lambda e: print(f"[CLIENT DEBUG] cannot load chats: {e}")))

    def _render_conversations(self):
        self.conv_list.delete(0, "end")
        for i, conv in enumerate(self.conversations):
            preview = ""
            if conv.last_message:
                m = conv.last_message
                preview = m.content if m.type == MessageType.TEXT else f"[{m.type.value.lower()}]"
                preview = "  · " + preview[:24]
            self.conv_list.insert("end", conv.title + preview)
            if conv.id == self.active:
                self.conv_list.selection_set(i)

    def _on_conversation_click(self):
        sel = self.conv_list.curselection()
        if not sel or sel[0] >= len(self.conversations):
            return
        self.select_conversation(self.conversations[sel[0]].id)

    def select_conversation(self, conversation_id: Optional[str]):
        if conversation_id == self.active:
            return
        self.active = conversation_id
        # selection never carries across conversations
        self.selecting = False
        self.selected_ids.clear()
        self._update_selection_bar()
        self.render_messages()
        if conversation_id:
            self.refresh_messages()

    def create_conversation(self):
        title = simpledialog.askstring("New chat", "Title:", initialvalue=default_chat_title(), parent=self)
        if title is None:
            return
        def done(data):
            self.refresh_conversations()
            self.select_conversation(data["id"])
        self.net.call("conversation.create", {"title": title.strip() or default_chat_title()},
                      self._ui(done), self._ui(lambda e: messagebox.showerror("Error", f"Cannot create chat: {e}")))

    def _active_conversation(self) -> Optional[Conversation]:
        return next((c for c in self.conversations if c.id == self.active), None)

    def rename_conversation(self):
        conv = self._active_conversation()
        if not conv:
            return
        title = simpledialog.askstring("Rename chat", "Title:", initialvalue=conv.title, parent=self)
        if not title or not title.strip():
            return
        self.net.call("conversation.rename", {"id": conv.id, "title": title.strip()},
                      self._ui(lambda _: self.refresh_conversations()),
                      self._ui(lambda e: messagebox.showerror("Error", f"Rename failed: {e}")))

    def delete_conversation(self):
        conv = self._active_conversation()
        if not conv:
            return
        if not messagebox.askyesno("Delete this chat?", "This will remove the chat and all its messages.", parent=self):
            return
        def done(_):
            self.reconciler.forget_conversation(conv.id)
            self.server_messages.pop(conv.id, None)
            if self.active == conv.id:
                self.select_conversation(None)
            self.refresh_conversations()
        self.net.call("conversation.delete", {"id": conv.id}, self._ui(done),
                      self._ui(lambda e: messagebox.showerror("Error", f"Delete failed: {e}")))

    # ---------- messages ----------
    def refresh_messages(self):
        cid = self.active
        if not cid:
            return
        def done(messages: List[Message]):
            self.server_messages[cid] = messages
            if cid == self.active:
                self.render_messages()
        self.net.list_messages(cid, self._ui(done),
                               self._ui(lambda e: print(f"[CLIENT DEBUG] cannot load messages: {e}")))

    def _upsert_confirmed(self, message: Message):
        ''' Put a confirmed message into the cached server list (ignored if already there) '''
        current = self.server_messages.setdefault(message.conversation_id, [])
        if any(m.id == message.id for m in current):
            return
        current.append(message)
        current.sort(key=lambda m: m.created_at)

    def _transport(self, message: Message, on_ok, on_error):
        ''' Send function used by the reconciler for first attempts and retries '''
        def confirmed(server_msg: Message):
            self._upsert_confirmed(server_msg)
            on_ok(server_msg)
        self.net.send_message(message, self._ui(confirmed), self._ui(on_error))

    def send_text(self):
        raw = self.entry.get().strip()
        if not raw:
            return
        if not self.active:
            messagebox.showinfo("No chat", "Create or select a chat first.", parent=self)
            return
        self.entry.delete(0, "end")
        self.reconciler.begin_send(self.active, MessageType.TEXT, emoji.emojize(raw, language="alias"))

    def send_files(self):
        if not self.active:
            messagebox.showinfo("No chat", "Create or select a chat first.", parent=self)
            return
        paths = filedialog.askopenfilenames(title="Select files to send")
        if not paths:
            return
        cid = self.active

        def uploaded(files: List[UploadedFile]):
            for f in files:
                self.reconciler.begin_send(cid, f.message_type(), f.url, original_name=f.name,
                                           mime_type=f.type, size=f.size)

        def failed(e: BaseException):
            print(f"[CLIENT DEBUG] upload failed: {e}")
            messagebox.showerror("Upload failed", f"Upload failed: {e}", parent=self)

        self.net.upload_files(cid, list(paths), self._ui(uploaded), self._ui(failed))

    def retry_message(self, message: Message):
        self.reconciler.retry(message)

    def delete_message(self, message: Message):
        if not messagebox.askyesno("Delete this message?", "This cannot be undone.", parent=self):
            return
        if not message.is_confirmed:
            self.reconciler.remove(message.id)
            return
        self.net.call("message.delete", {"id": message.id},
                      self._ui(lambda _: self.refresh_messages()),
                      self._ui(lambda e: messagebox.showerror("Delete failed", f"Delete failed: {e}", parent=self)))

    # ---------- selection ----------
    def toggle_selecting(self):
        self.selecting = not self.selecting
        self.selected_ids.clear()
        self._update_selection_bar()
        self.render_messages()

    def toggle_selected(self, message_id: str):
        if message_id in self.selected_ids:
            self.selected_ids.discard(message_id)
        else:
            self.selected_ids.add(message_id)
        self._update_selection_bar()
        self.render_messages()

    def _update_selection_bar(self):
        for w in (self.delete_sel_btn, self.download_btn, self.selection_label):
            w.pack_forget()
        self.select_btn.configure(text="Cancel" if self.selecting else "Select")
        if not self.selecting:
            return
        chosen = [m for m in self.visible if m.id in self.selected_ids]
        images = sum(1 for m in chosen if m.type == MessageType.IMAGE)
        self.selection_label.configure(text=f"{len(chosen)} selected, {images} image(s)")
        self.selection_label.pack(side="left", padx=8)
        self.delete_sel_btn.pack(side="left", padx=4)
        self.download_btn.pack(side="left", padx=4)
        self.download_btn.configure(state="normal" if images and not self.downloading else "disabled")

    def _clear_selection(self):
        self.selecting = False
        self.selected_ids.clear()
        self._update_selection_bar()
        self.render_messages()

    def delete_selected(self):
        chosen = [m for m in self.visible if m.id in self.selected_ids]
        if not chosen:
            return
        if not messagebox.askyesno("Delete selected messages?", "This cannot be undone.", parent=self):
            return
        server_ids = [m.id for m in chosen if m.is_confirmed]
        local_ids = [m.id for m in chosen if not m.is_confirmed]

        def finish(_=None):
            # local entries go only after the server part is confirmed
            self.reconciler.remove_many(local_ids)
            self._clear_selection()
            self.refresh_messages()

        if not server_ids:
            finish()
            return
        self.net.call("message.batchDelete", {"ids": server_ids}, self._ui(finish),
                      self._ui(lambda e: messagebox.showerror("Delete failed", f"Delete failed: {e}", parent=self)))

    # ---------- downloads ----------
    def _fetch(self, url: str, on_ok, on_error):
        self.net.fetch(url, self._ui(on_ok), self._ui(on_error))

    def _save_bytes(self, data: bytes, filename: str, title: str):
        path = filedialog.asksaveasfilename(initialfile=filename, title=title, parent=self)
        if not path:
            return
        with open(path, "wb") as f:
            f.write(data)
        self.status.configure(text=f"Saved {path}")

    def save_attachment(self, message: Message):
        name = message.original_name or (single_image_name(message) if message.type == MessageType.IMAGE else "file")
        self._fetch(message.content,
                    lambda data: self._save_bytes(data, name, f"Save file: {name}"),
                    lambda e: messagebox.showerror("Download failed", f"Download failed: {e}", parent=self))

    def download_selected_images(self):
        if self.downloading:
            return
        images = selected_images(self.visible, self.selected_ids)
        if not images:
            return
        if len(images) == 1:
            self.save_attachment(images[0])
            return

        self.downloading = True
        self._update_selection_bar()
        self.status.configure(text=f"Downloading {len(images)} images...")

        def done(payloads: List[bytes]):
            self.downloading = False
            self._update_selection_bar()
            filename, archive = build_archive(images, payloads)
            self._save_bytes(archive, filename, "Save images")

        def failed(e: BaseException):
            self.downloading = False
            self._update_selection_bar()
            self.status.configure(text="")
            messagebox.showerror("Download failed", f"Download failed: {e}", parent=self)

        ImageBatchDownload(images, self._fetch, done, failed).start()

    def _thumbnail(self, url: str) -> Optional[ImageTk.PhotoImage]:
        ''' Cached thumbnail for an image URL; starts a fetch on first use '''
        if url in self.thumbnails:
            return self.thumbnails[url]
        if url not in self._thumb_requests:
            self._thumb_requests.add(url)
            self._fetch(url, lambda data: self._thumbnail_loaded(url, data),
                        lambda e: print(f"[CLIENT DEBUG] thumbnail {url}: {e}"))
        return None

    def _thumbnail_loaded(self, url: str, data: bytes):
        try:
            img = Image.open(io.BytesIO(data))
            img.thumbnail(THUMB_SIZE)
            self.thumbnails[url] = ImageTk.PhotoImage(img)
        except (UnidentifiedImageError, OSError) as e:
            print(f"⚠ Warning: cannot preview {url}: {e}")
            return
        self.render_messages()

    # ---------- rendering ----------
    def _link(self, label: str, tag: str, action: Callable[[], None]):
        self.text.insert("end", label, ("link", tag))
        self.text.tag_bind(tag, "<Button-1>", lambda e: action())
        self.text.tag_bind(tag, "<Enter>", lambda e: self.text.config(cursor="hand2"))
        self.text.tag_bind(tag, "<Leave>", lambda e: self.text.config(cursor=""))

    def render_messages(self):
        self.visible = merge_view(self.server_messages.get(self.active, []),
                                  self.reconciler.messages(), self.active)
        self.text.configure(state="normal")
        self.text.delete("1.0", "end")
        for tag in self.text.tag_names():
            if tag.startswith("act_"):
                self.text.tag_delete(tag)

        if not self.active:
            self.text.insert("end", "Select or create a chat to start.\n", ("label",))
        for n, (m, label) in enumerate(timestamp_labels(self.visible)):
            if label:
                self.text.insert("end", f"— {label} —\n", ("label",))
            self._render_message(n, m)

        self.text.configure(state="disabled")
        self.text.see("end")
        if self.selecting:
            self._update_selection_bar()

    def _render_message(self, n: int, m: Message):
        if self.selecting:
            box = "☑ " if m.id in self.selected_ids else "☐ "
            self._link(box, f"act_sel_{n}", lambda mid=m.id: self.toggle_selected(mid))

        time = m.created_at.astimezone().strftime("%H:%M")
        self.text.insert("end", f"({time}) ", ("mine",))
        if m.type == MessageType.TEXT:
            self.text.insert("end", m.content)
        else:
            name = m.original_name or m.content.rsplit("/", 1)[-1]
            if m.type == MessageType.IMAGE and m.is_confirmed:
                thumb = self._thumbnail(m.content)
                if thumb is not None:
                    self.text.image_create("end", image=thumb)
                    self.text.insert("end", "\n")
            self.text.insert("end", f"{m.type.value.title()}: {name} ({format_size(m.size)}) ", ("file",))
            if m.is_confirmed and not self.selecting:
                self._link("[Save]", f"act_save_{n}", lambda msg=m: self.save_attachment(msg))

        if m.status == SENDING:
            self.text.insert("end", "  sending…", ("sending",))
        elif m.status == FAILED:
            self.text.insert("end", f"  failed: {m.error_message} ", ("failed",))
            self._link("[Retry]", f"act_retry_{n}", lambda msg=m: self.retry_message(msg))
        if not self.selecting and m.status != SENDING:
            self.text.insert("end", " ")
            self._link("[Delete]", f"act_del_{n}", lambda msg=m: self.delete_message(msg))
        self.text.insert("end", "\n")

    # ========== Emoji picker UI ==========
    def open_emoji_picker(self):
        ''' Small grid of common emoji; clicking one inserts it at the cursor '''
        if getattr(self, "_emoji_win", None) and tk.Toplevel.winfo_exists(self._emoji_win):
            self._emoji_win.lift()
            return
        win = tk.Toplevel(self)
        self._emoji_win = win
        win.title("Pick an emoji")
        win.transient(self)
        win.resizable(False, False)
        win.bind("<Escape>", lambda e: win.destroy())
        insert_at = self.entry.index("insert")

        style = ttk.Style(win)
        style.configure("Emoji.TButton", font=("Segoe UI Emoji", 16), padding=(4, 2))
        grid = ttk.Frame(win)
        grid.pack(padx=8, pady=8)
        cols = 8
        for i, code in enumerate(EMOJI_CODES):
            symbol = emoji.emojize(code, language="alias")
            if symbol == code:
                continue  # alias unknown to this emoji release
            def pick(s=symbol):
                self.entry.insert(insert_at, s)
                self.entry.focus_set()
                win.destroy()
            ttk.Button(grid, text=symbol, width=3, style="Emoji.TButton", command=pick)\
                .grid(row=i // cols, column=i % cols, padx=2, pady=2)
