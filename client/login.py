"""
Login window for chatroom application.
Asks for a username before connecting; shows the previous error inline.
"""
import tkinter as tk
from tkinter import ttk
from typing import Optional

MAX_NAME = 32


def validate_username(name: str) -> Optional[str]:
    '''
    Check a username before it is sent to the server.
    Returns an error message, or None when the name is acceptable.
    '''
    name = name.strip()
    if not name:
        return "Please enter a name."
    if len(name) > MAX_NAME:
        return f"Name must be at most {MAX_NAME} characters."
    if any(ch.isspace() for ch in name):
        return "Name cannot contain spaces."
    return None


class LoginWindow:
    """
    Login window for chatroom.

    Attributes:
        root: Tkinter root window
        username: Username entered by user (None until submitted)
    """

    def __init__(self, root: tk.Tk, error_message: Optional[str] = None):
        self.root = root
        self.root.title("Chatroom Login")
        self.root.geometry("420x240")
        self.root.configure(bg="#f3f3f3")
        self.username: Optional[str] = None

        tk.Label(root, text="Welcome to Chatroom", font=("Segoe UI", 20, "bold"),
                 bg="#f3f3f3", fg="#1f1f1f").pack(pady=(24, 12))

        self.entry = ttk.Entry(root, font=("Segoe UI", 12))
        self.entry.pack(fill="x", padx=40, ipady=4)
        self.entry.bind("<Return>", lambda e: self.submit())
        self.entry.focus_set()

        # Inline error line (e.g. "Username already exists")
        self.error_label = tk.Label(root, text=error_message or "", fg="#c62828", bg="#f3f3f3")
        self.error_label.pack(pady=6)

        ttk.Button(root, text="Login", command=self.submit).pack(pady=6)
        root.protocol("WM_DELETE_WINDOW", root.destroy)

    def submit(self):
        name = self.entry.get()
        error = validate_username(name)
        if error:
            self.error_label.configure(text=error)
            return
        self.username = name.strip()
        self.root.destroy()


def show_login(error_message: Optional[str] = None) -> Optional[str]:
    '''
    Display the login window and block until it closes.
    Returns the chosen username, or None if the user closed the window.
    '''
    root = tk.Tk()
    win = LoginWindow(root, error_message)
    root.mainloop()
    return win.username
