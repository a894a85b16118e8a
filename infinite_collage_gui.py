from __future__ import annotations

import threading
import tkinter as tk
from pathlib import Path
from tkinter import colorchooser, filedialog, messagebox
from tkinter import ttk

from PIL import Image, ImageTk

import infinite_collage as ic


MAX_SPRITES = 256


class InfiniteCollageGui(tk.Tk):
    def __init__(self) -> None:
        super().__init__()
        self.title("Infinite Collage")
        self.geometry("1280x800")

        self.gallery = ic.Gallery()
        self._sprites: dict = {}
        self._busy = False
        self._render_after: str | None = None
        self._drag_from: tuple[int, int] | None = None

        defaults = ic.Settings()
        self.mode_var = tk.StringVar(value=defaults.mode)
        self.ratio_var = tk.StringVar(value=defaults.ratio)
        self.resolution_var = tk.StringVar(value=defaults.resolution)
        self.inverted_var = tk.BooleanVar(value=defaults.inverted)
        self.bg_var = tk.StringVar(value=defaults.background)
        self.tilt_var = tk.DoubleVar(value=defaults.tilt)
        self.size_var = tk.DoubleVar(value=defaults.tile_size)
        self.gap_var = tk.DoubleVar(value=defaults.gap)
        self.zoom_var = tk.DoubleVar(value=defaults.zoom)

        self.tilt_label_var = tk.StringVar(value="")
        self.size_label_var = tk.StringVar(value="")
        self.gap_label_var = tk.StringVar(value="")
        self.zoom_label_var = tk.StringVar(value="")

        self.images_var = tk.StringVar(value="")
        self.status_var = tk.StringVar(value="")

        self._preview_tk: ImageTk.PhotoImage | None = None
        self._progress: ttk.Progressbar | None = None
        self._bg_swatch: tk.Label | None = None

        self._build_ui()
        self._update_counts()
        self._schedule_render()

    def _build_ui(self) -> None:
        self.columnconfigure(1, weight=1)
        self.rowconfigure(0, weight=1)

        left = ttk.Frame(self, padding=12)
        left.grid(row=0, column=0, sticky="nsw")
        left.columnconfigure(0, weight=1)

        right = ttk.Frame(self, padding=12)
        right.grid(row=0, column=1, sticky="nsew")
        right.columnconfigure(0, weight=1)
        right.rowconfigure(0, weight=1)

        row = 0
        ttk.Label(left, text="Photos").grid(row=row, column=0, sticky="w")
        row += 1
        add_row = ttk.Frame(left)
        add_row.grid(row=row, column=0, sticky="ew", pady=(4, 4))
        add_row.columnconfigure(0, weight=1)
        add_row.columnconfigure(1, weight=1)
        self.add_files_btn = ttk.Button(add_row, text="Add files...", command=self._choose_files)
        self.add_files_btn.grid(row=0, column=0, sticky="ew")
        self.add_folder_btn = ttk.Button(add_row, text="Add folder...", command=self._choose_folder)
        self.add_folder_btn.grid(row=0, column=1, sticky="ew", padx=(6, 0))
        row += 1

        edit_row = ttk.Frame(left)
        edit_row.grid(row=row, column=0, sticky="ew", pady=(0, 4))
        edit_row.columnconfigure(0, weight=1)
        edit_row.columnconfigure(1, weight=1)
        self.shuffle_btn = ttk.Button(edit_row, text="Shuffle", command=self._on_shuffle)
        self.shuffle_btn.grid(row=0, column=0, sticky="ew")
        self.clear_btn = ttk.Button(edit_row, text="Clear", command=self._on_clear)
        self.clear_btn.grid(row=0, column=1, sticky="ew", padx=(6, 0))
        row += 1

        ttk.Label(left, textvariable=self.images_var, foreground="#444").grid(row=row, column=0, sticky="w", pady=(0, 10))
        row += 1

        ttk.Label(left, text="Layout").grid(row=row, column=0, sticky="w")
        row += 1
        mode = ttk.Combobox(left, textvariable=self.mode_var, values=list(ic.MODES), state="readonly", width=18)
        mode.grid(row=row, column=0, sticky="w", pady=(4, 10))
        mode.bind("<<ComboboxSelected>>", self._on_layout_changed)
        row += 1

        ttk.Label(left, text="Aspect ratio").grid(row=row, column=0, sticky="w")
        row += 1
        ratio_row = ttk.Frame(left)
        ratio_row.grid(row=row, column=0, sticky="ew", pady=(4, 10))
        ratio = ttk.Combobox(ratio_row, textvariable=self.ratio_var, values=list(ic.RATIOS), state="readonly", width=10)
        ratio.grid(row=0, column=0, sticky="w")
        ratio.bind("<<ComboboxSelected>>", self._on_layout_changed)
        ttk.Checkbutton(
            ratio_row, text="Swap orientation", variable=self.inverted_var, command=self._schedule_render
        ).grid(row=0, column=1, sticky="w", padx=(8, 0))
        row += 1

        ttk.Label(left, text="Output size / background").grid(row=row, column=0, sticky="w")
        row += 1
        res_row = ttk.Frame(left)
        res_row.grid(row=row, column=0, sticky="ew", pady=(4, 10))
        res = ttk.Combobox(
            res_row, textvariable=self.resolution_var, values=list(ic.RESOLUTIONS), state="readonly", width=10
        )
        res.grid(row=0, column=0, sticky="w")
        res.bind("<<ComboboxSelected>>", self._on_layout_changed)
        ttk.Button(res_row, text="Color...", command=self._choose_background).grid(row=0, column=1, padx=(8, 0))
        self._bg_swatch = tk.Label(res_row, width=3, background=self.bg_var.get(), relief="sunken")
        self._bg_swatch.grid(row=0, column=2, padx=(6, 0))
        row += 1

        sliders = [
            ("Tilt", self.tilt_var, self.tilt_label_var, -45.0, 45.0),
            ("Tile size", self.size_var, self.size_label_var, 100.0, 800.0),
            ("Gap", self.gap_var, self.gap_label_var, 0.0, 60.0),
            ("Preview zoom", self.zoom_var, self.zoom_label_var, 0.05, 2.0),
        ]
        for text, var, label_var, lo, hi in sliders:
            head = ttk.Frame(left)
            head.grid(row=row, column=0, sticky="ew")
            head.columnconfigure(0, weight=1)
            ttk.Label(head, text=text).grid(row=0, column=0, sticky="w")
            ttk.Label(head, textvariable=label_var, foreground="#1d5fbf").grid(row=0, column=1, sticky="e")
            row += 1
            scale = ttk.Scale(left, from_=lo, to=hi, variable=var, orient="horizontal", command=self._on_slider)
            scale.grid(row=row, column=0, sticky="ew", pady=(2, 8))
            row += 1

        self.save_btn = ttk.Button(left, text="Save image...", command=self._on_save)
        self.save_btn.grid(row=row, column=0, sticky="ew", pady=(8, 0))
        row += 1

        self._progress = ttk.Progressbar(left, mode="indeterminate")
        self._progress.grid(row=row, column=0, sticky="ew", pady=(8, 0))
        row += 1

        ttk.Separator(left, orient="horizontal").grid(row=row, column=0, sticky="ew", pady=(10, 10))
        row += 1
        ttk.Label(left, textvariable=self.status_var, foreground="#444").grid(row=row, column=0, sticky="w")

        self.preview_label = ttk.Label(right, anchor="center", cursor="fleur")
        self.preview_label.grid(row=0, column=0, sticky="nsew")
        self.preview_label.bind("<ButtonPress-1>", self._on_drag_start)
        self.preview_label.bind("<B1-Motion>", self._on_drag_move)
        self.preview_label.bind("<ButtonRelease-1>", self._on_drag_end)

        self._update_slider_labels()

    def _settings(self) -> ic.Settings:
        return ic.Settings(
            mode=self.mode_var.get(),
            tile_size=round(float(self.size_var.get())),
            gap=round(float(self.gap_var.get())),
            tilt=round(float(self.tilt_var.get())),
            ratio=self.ratio_var.get(),
            resolution=self.resolution_var.get(),
            background=self.bg_var.get(),
            zoom=self._snap_zoom(self.zoom_var.get()),
            inverted=bool(self.inverted_var.get()),
        )

    def _snap_zoom(self, value: float) -> float:
        v = max(0.05, min(2.0, float(value)))
        return round(v / 0.05) * 0.05

    def _update_slider_labels(self) -> None:
        s = self._settings()
        self.tilt_label_var.set(f"{s.tilt:.0f}°")
        self.size_label_var.set(f"{s.tile_size:.0f}px")
        self.gap_label_var.set(f"{s.gap:.0f}px")
        self.zoom_label_var.set(f"{round(s.zoom * 100)}%")

    def _update_counts(self) -> None:
        n = len(self.gallery)
        self.images_var.set(f"Photos: {n}" if n else "Gallery empty: add photos to start")
        state = "normal" if (n and not self._busy) else "disabled"
        self.shuffle_btn.configure(state=state)
        self.clear_btn.configure(state=state)
        self.save_btn.configure(state=state)

    def _set_busy(self, busy: bool) -> None:
        self._busy = busy
        state = "disabled" if busy else "normal"
        self.add_files_btn.configure(state=state)
        self.add_folder_btn.configure(state=state)
        self._update_counts()
        if self._progress is not None:
            if busy:
                self._progress.start(10)
            else:
                self._progress.stop()

    def _reset_sprites(self) -> None:
        self._sprites = {}

    def _schedule_render(self, *_args) -> None:
        if self._render_after is not None:
            return
        self._render_after = self.after(15, self._render_preview)

    def _render_preview(self) -> None:
        self._render_after = None
        settings = self._settings()
        if len(self._sprites) > MAX_SPRITES:
            self._reset_sprites()
        try:
            img = ic.render_collage(
                self.gallery.photos,
                settings,
                self.gallery.seed,
                self.gallery.offset,
                scale=settings.zoom,
                resample=Image.Resampling.BILINEAR,
                workers=1,
                sprite_cache=self._sprites,
            )
        except ValueError as e:
            messagebox.showerror("Error", str(e))
            return
        self._preview_tk = ImageTk.PhotoImage(img)
        self.preview_label.configure(image=self._preview_tk)
        canvas = settings.canvas()
        self.status_var.set(
            f"{ic.canvas_label(canvas)} px  zoom={round(settings.zoom * 100)}%  seed={self.gallery.seed:.6f}"
        )

    def _on_slider(self, _evt) -> None:
        self._update_slider_labels()
        self._schedule_render()

    def _on_layout_changed(self, _evt) -> None:
        self._schedule_render()

    def _choose_background(self) -> None:
        _rgb, hex_color = colorchooser.askcolor(color=self.bg_var.get())
        if hex_color:
            self.bg_var.set(hex_color)
            if self._bg_swatch is not None:
                self._bg_swatch.configure(background=hex_color)
            self._schedule_render()

    def _choose_files(self) -> None:
        paths = filedialog.askopenfilenames(
            filetypes=[("Images", " ".join(f"*{e}" for e in sorted(ic.SUPPORTED_EXTS))), ("All", "*.*")],
        )
        if paths:
            self._load_async([Path(p) for p in paths])

    def _choose_folder(self) -> None:
        folder = filedialog.askdirectory()
        if not folder:
            return
        try:
            files = ic.iter_image_files(Path(folder), recursive=False)
        except FileNotFoundError as e:
            messagebox.showerror("Error", str(e))
            return
        if not files:
            messagebox.showinfo("Info", f"No images found in: {folder}")
            return
        self._load_async(files)

    def _load_async(self, paths: list[Path]) -> None:
        self._set_busy(True)
        self.status_var.set(f"Loading {len(paths)} photos...")

        def load_worker() -> None:
            try:
                photos = ic.load_photos(paths)

                def update_ui() -> None:
                    self.gallery.add(photos)
                    skipped = len(paths) - len(photos)
                    if skipped:
                        messagebox.showwarning("Warning", f"Skipped {skipped} unreadable files")
                    self._schedule_render()

                self.after(0, update_ui)
            except Exception as e:
                msg = str(e)
                self.after(0, lambda m=msg: messagebox.showerror("Error", m))
            finally:
                self.after(0, lambda: self._set_busy(False))

        threading.Thread(target=load_worker, daemon=True).start()

    def _on_shuffle(self) -> None:
        self.gallery.shuffle()
        self._reset_sprites()
        self._schedule_render()

    def _on_clear(self) -> None:
        if not messagebox.askyesno("Clear", "Remove all photos?"):
            return
        self.gallery.clear()
        self._reset_sprites()
        self._update_counts()
        self._schedule_render()

    def _on_drag_start(self, evt) -> None:
        self._drag_from = (evt.x, evt.y)

    def _on_drag_move(self, evt) -> None:
        if self._drag_from is None:
            return
        x0, y0 = self._drag_from
        self._drag_from = (evt.x, evt.y)
        self.gallery.pan(evt.x - x0, evt.y - y0, self._settings().zoom)
        self._schedule_render()

    def _on_drag_end(self, _evt) -> None:
        self._drag_from = None

    def _on_save(self) -> None:
        if not len(self.gallery):
            return
        path = filedialog.asksaveasfilename(
            initialfile=ic.default_export_name(),
            defaultextension=".jpg",
            filetypes=[("JPEG", "*.jpg;*.jpeg"), ("PNG", "*.png"), ("All", "*.*")],
        )
        if not path:
            return

        photos = self.gallery.photos
        settings = self._settings()
        seed = self.gallery.seed
        offset = self.gallery.offset

        def save_worker() -> None:
            try:
                img = ic.render_collage(photos, settings, seed, offset)
                out_path = ic.save_image(img, Path(path))
                self.after(0, lambda: messagebox.showinfo("Done", f"Saved: {out_path}"))
            except Exception as e:
                msg = str(e)
                self.after(0, lambda m=msg: messagebox.showerror("Error", m))
            finally:
                self.after(0, lambda: self._set_busy(False))

        self._set_busy(True)
        self.status_var.set("Rendering full-size image...")
        threading.Thread(target=save_worker, daemon=True).start()


def main() -> int:
    app = InfiniteCollageGui()
    app.mainloop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
