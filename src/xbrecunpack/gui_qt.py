from __future__ import annotations
import os, threading, traceback
from typing import Optional

from PySide6.QtCore import Signal, Slot, QObject, QThread
from PySide6.QtWidgets import (
    QApplication, QMainWindow, QWidget, QLabel, QLineEdit, QPushButton,
    QFileDialog, QCheckBox, QProgressBar, QTableWidget,
    QTableWidgetItem, QGridLayout, QHBoxLayout, QVBoxLayout, QMessageBox
)

from .parser import format_summary
from .recovery import RemoteRecovery
from .utils import human_size, parse_size

APP_NAME = "XbRecUnpack"
QSS = """
*{font-family: 'Segoe UI','Inter','Roboto'; font-size:10.5pt;}
QMainWindow{background:#0F1115;}
QWidget{color:#E6E9EF;background:#0F1115;}
QLabel#Brand{color:#7BF79E;font-weight:700;font-size:18pt;}
QFrame#Card{background:#171A21;border:1px solid #232733;border-radius:12px;}
QLineEdit{background:#0B0D11;border:1px solid #2A3040;border-radius:6px;padding:6px;}
QPushButton{background:#232733;border:1px solid #2F3542;border-radius:8px;padding:8px 14px;}
QPushButton:disabled{opacity:.5;}
QPushButton#Primary{background:qlineargradient(x1:0,y1:0,x2:1,y2:0,stop:0 #22D3EE,stop:1 #3B82F6);border:none;color:white;font-weight:600;}
QProgressBar{border:1px solid #2A3040;border-radius:8px;background:#0B0D11;text-align:center;color:#AAB1BD;height:18px;}
QProgressBar::chunk{background:qlineargradient(x1:0,y1:0,x2:1,y2:0,stop:0 #22D3EE,stop:1 #3B82F6);border-radius:8px;}
QHeaderView::section{background:#171A21;border:1px solid #232733;padding:6px;}
QTableWidget{gridline-color:#232733;selection-background-color:#3B82F6;}
"""

class Worker(QObject):
    progress = Signal(int, int)
    found    = Signal(object)
    status   = Signal(str)
    error    = Signal(str)
    done     = Signal()

    def __init__(self, src: str, out: str, opts: dict):
        """
        Create a new worker.

        Parameters
        ----------
        src : str
            Recovery executable to unpack.
        out : str
            Directory the variant folders are written to.
        opts : dict
            ``chunk`` (scan window in bytes) and ``list_only``.
        """
        super().__init__()
        self.src = src
        self.out = out
        self.opts = opts
        self._stop = threading.Event()

    @Slot()
    def run(self):
        """
        Scan, load the manifest and extract, all on the worker thread.
        """
        try:
            self.status.emit("Scanning…")
            with RemoteRecovery(
                self.src,
                chunk=self.opts["chunk"],
                progress_cb=lambda cur, total: self.progress.emit(int(cur), int(total)),
            ) as rec:
                manifest = rec.read()
                self.status.emit(" • ".join(format_summary(manifest)[1:3]))
                results = rec.extract(self.out, list_only=self.opts["list_only"])
                try:
                    for r in results:
                        self.found.emit(r)
                        self.progress.emit(r.index, r.total)
                        if self._stop.is_set():
                            self.status.emit("Stopped")
                            break
                finally:
                    results.close()
            self.done.emit()
        except Exception:
            self.error.emit(traceback.format_exc())

    def stop(self):
        self._stop.set()

class Main(QMainWindow):
    def __init__(self):
        super().__init__()
        self.setWindowTitle(APP_NAME)
        self.setMinimumSize(1000, 620)
        self._build_ui()
        self._wire()
        self._reset_state()

    def _build_ui(self):
        root = QWidget(self)
        self.setCentralWidget(root)
        outer = QVBoxLayout(root)
        outer.setContentsMargins(12,12,12,12)
        outer.setSpacing(10)

        brand_row = QHBoxLayout()
        self.lblBrand = QLabel(APP_NAME, objectName="Brand")
        brand_row.addWidget(self.lblBrand)
        brand_row.addStretch(1)
        outer.addLayout(brand_row)

        io_card = QWidget(objectName="Card")
        io = QGridLayout(io_card)
        io.setContentsMargins(12,12,12,12)
        self.edSrc = QLineEdit()
        self.edOut = QLineEdit()
        self.btnFile = QPushButton("File…")
        self.btnOut = QPushButton("Browse")
        io.addWidget(QLabel("Recovery"), 0, 0)
        io.addWidget(self.edSrc, 0, 1, 1, 3)
        io.addWidget(self.btnFile, 0, 4)
        io.addWidget(QLabel("Output"), 1, 0)
        io.addWidget(self.edOut, 1, 1, 1, 3)
        io.addWidget(self.btnOut, 1, 4)
        outer.addWidget(io_card)

        opt_card = QWidget(objectName="Card")
        opt = QGridLayout(opt_card)
        opt.setContentsMargins(12,12,12,12)
        self.edChunk = QLineEdit("16M")
        self.ckList = QCheckBox("List only")
        self.btnStart = QPushButton("Start", objectName="Primary")
        self.btnStop = QPushButton("Stop")
        self.btnStop.setEnabled(False)
        opt.addWidget(QLabel("Scan chunk"), 0, 0)
        opt.addWidget(self.edChunk, 0, 1)
        opt.addWidget(self.ckList, 0, 2)
        opt.addWidget(self.btnStart, 0, 5)
        opt.addWidget(self.btnStop, 0, 6)
        outer.addWidget(opt_card)

        self.pb = QProgressBar()
        self.pb.setMinimum(0)
        self.pb.setMaximum(1)
        outer.addWidget(self.pb)

        self.tbl = QTableWidget(0, 6)
        self.tbl.setHorizontalHeaderLabels(["#","action","path","size","archive","note"])
        self.tbl.horizontalHeader().setStretchLastSection(True)
        outer.addWidget(self.tbl, 1)

    def _wire(self):
        self.btnFile.clicked.connect(self._pick_file)
        self.btnOut.clicked.connect(self._pick_out)
        self.btnStart.clicked.connect(self._start)
        self.btnStop.clicked.connect(self._stop)

    def _reset_state(self):
        self._thread: Optional[QThread] = None
        self._worker: Optional[Worker]  = None
        self.pb.setValue(0)
        self.pb.setMaximum(1)
        self.tbl.setRowCount(0)
        self.setWindowTitle(f"{APP_NAME} Ready")

    def _pick_file(self):
        p, _ = QFileDialog.getOpenFileName(self, "Choose recovery executable", "", "Executables (*.exe);;All files (*.*)")
        if p:
            self.edSrc.setText(p)
            if not self.edOut.text().strip():
                self.edOut.setText(os.path.splitext(p)[0])

    def _pick_out(self):
        p = QFileDialog.getExistingDirectory(self, "Choose output folder")
        if p:
            self.edOut.setText(p)

    def _start(self):
        src = self.edSrc.text().strip()
        out = self.edOut.text().strip()
        if not src:
            QMessageBox.warning(self, "Missing", "Pick a recovery executable")
            return
        if not out and not self.ckList.isChecked():
            QMessageBox.warning(self, "Missing", "Choose an output folder")
            return
        self.tbl.setRowCount(0)
        self.pb.setValue(0); self.pb.setMaximum(1)
        self.btnStart.setEnabled(False); self.btnStop.setEnabled(True)
        opts = dict(
            chunk=parse_size(self.edChunk.text()),
            list_only=self.ckList.isChecked(),
        )
        self._thread = QThread(self)
        self._worker = Worker(src, out, opts)
        self._worker.moveToThread(self._thread)
        self._thread.started.connect(self._worker.run)
        self._worker.progress.connect(self._on_progress)
        self._worker.found.connect(self._on_found)
        self._worker.status.connect(lambda s: self.setWindowTitle(f"{APP_NAME} • {s}"))
        self._worker.error.connect(self._on_error)
        self._worker.done.connect(self._on_done)
        self._thread.start()

    def _stop(self):
        if self._worker:
            self._worker.stop()

    @Slot(int, int)
    def _on_progress(self, cur: int, total: int):
        if total > 0:
            self.pb.setMaximum(total)
            self.pb.setValue(min(cur, total))
        else:
            self.pb.setMaximum(0)

    @Slot(object)
    def _on_found(self, r):
        row = self.tbl.rowCount()
        self.tbl.insertRow(row)
        def _set(c, v):
            self.tbl.setItem(row, c, QTableWidgetItem(str(v)))
        _set(0, f"{r.index}/{r.total}")
        _set(1, r.action.value)
        _set(2, r.variant_path)
        _set(3, human_size(r.size) if r.size is not None else "")
        _set(4, "" if r.archive_index is None else r.archive_index)
        _set(5, r.note)

    @Slot()
    def _on_done(self):
        self.btnStart.setEnabled(True); self.btnStop.setEnabled(False)
        self.setWindowTitle(f"{APP_NAME} Done")
        if self._thread:
            self._thread.quit(); self._thread.wait(1500)
        self._thread = None; self._worker = None

    @Slot(str)
    def _on_error(self, msg: str):
        QMessageBox.critical(self, "Error", msg)
        self._on_done()

def main() -> int:
    app = QApplication([])
    app.setStyleSheet(QSS)
    w = Main()
    w.show()
    return app.exec()
