"""
Main window for GestOS

Two tabs:
- Reconocimiento: camera view with the hand skeleton overlay, mode buttons
  (camera / Rock-Paper-Scissors / Simon Says / stop), live gesture label,
  the game panel of the active mode and an inline error panel with retry.
- Modos: start/stop buttons for the external gesture control executables.

Consumer activation runs on a worker thread; a QTimer drives the game
engines and repaints the camera view.
"""

import sys
import threading

from PyQt6.QtCore import QObject, Qt, QTimer, pyqtSignal
from PyQt6.QtGui import QImage, QPixmap
from PyQt6.QtWidgets import (
    QApplication,
    QGridLayout,
    QHBoxLayout,
    QLabel,
    QPushButton,
    QTabWidget,
    QVBoxLayout,
    QWidget,
)

from gestos.consumers.rock_paper_scissors import CHOICE_EMOJIS, GameResult, GameState
from gestos.consumers.simon_says import SimonState
from gestos.vision.gesture_types import GESTURE_EMOJIS, display_name

MODE_TITLES = {
    'overlay': "Cámara",
    'rock_paper_scissors': "Piedra, Papel o Tijeras",
    'simon_says': "Simón Dice",
}

RESULT_TEXT = {
    GameResult.WIN: "¡Ganaste!",
    GameResult.LOSE: "Perdiste",
    GameResult.TIE: "Empate",
}

PROCESS_TITLES = {
    'gestos-volumen': "Volumen",
    'gestos-aplicaciones': "Aplicaciones",
    'gestos-multimedia': "Multimedia",
    'gestos-sistema': "Sistema",
    'gestos-atajos': "Atajos",
    'gestos-mouse': "Mouse",
    'gestos-navegacion': "Navegación",
}


class GuiSignals(QObject):
    """Qt signals for thread-safe updates from worker threads."""
    activation_done = pyqtSignal(str, bool)   # mode, ok
    process_status = pyqtSignal(dict)         # {'processId': str, 'isRunning': bool}


class CameraView(QLabel):
    """Shows the latest camera frame with the landmark overlay."""

    def __init__(self, parent=None):
        super().__init__(parent)
        self.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self.setMinimumSize(320, 240)
        self.setStyleSheet("background-color: black; color: #888;")
        self.show_placeholder()

    def show_placeholder(self, text: str = "Cámara detenida"):
        self.clear()
        self.setText(text)

    def update_frame(self, frame):
        if frame is None:
            return
        height, width, _ = frame.shape
        bytes_per_line = 3 * width
        q_img = QImage(frame.data, width, height, bytes_per_line, QImage.Format.Format_RGB888).rgbSwapped()
        pixmap = QPixmap.fromImage(q_img)
        self.setPixmap(pixmap.scaled(
            self.size(),
            Qt.AspectRatioMode.KeepAspectRatio,
            Qt.TransformationMode.SmoothTransformation
        ))


class GamePanel(QWidget):
    """State, countdown, sequence and stats of the active game, plus its buttons."""

    def __init__(self, parent=None):
        super().__init__(parent)
        layout = QVBoxLayout(self)
        self.title = QLabel()
        self.title.setStyleSheet("font-size: 18px; font-weight: bold;")
        self.state_label = QLabel()
        self.state_label.setStyleSheet("font-size: 28px;")
        self.state_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self.detail_label = QLabel()
        self.detail_label.setWordWrap(True)
        self.stats_label = QLabel()

        buttons = QHBoxLayout()
        self.primary_button = QPushButton()
        self.secondary_button = QPushButton()
        self.stats_button = QPushButton("Reiniciar estadísticas")
        for button in (self.primary_button, self.secondary_button, self.stats_button):
            buttons.addWidget(button)

        for widget in (self.title, self.state_label, self.detail_label, self.stats_label):
            layout.addWidget(widget)
        layout.addLayout(buttons)
        layout.addStretch()


class MainWindow(QWidget):
    def __init__(self, app):
        super().__init__()
        self.app = app
        self.config = app.config
        self.signals = GuiSignals()
        self.signals.activation_done.connect(self._on_activation_done)
        self.signals.process_status.connect(self._on_process_status)
        self._status_callback = self.signals.process_status.emit
        self.app.processes.add_status_listener(self._status_callback)

        self._pending_mode = None
        self._process_buttons = {}
        self._process_labels = {}

        self.initUI()

        self.timer = QTimer(self)
        self.timer.timeout.connect(self.refresh)
        self.timer.start(self.config.get('display', 'refresh_interval_ms', default=33))

    def initUI(self):
        self.setWindowTitle("GestOS")
        self.resize(self.config.get('display', 'window_width', default=1280),
                    self.config.get('display', 'window_height', default=800))

        tabs = QTabWidget(self)
        tabs.addTab(self._build_recognition_tab(), "Reconocimiento")
        tabs.addTab(self._build_processes_tab(), "Modos")

        layout = QVBoxLayout(self)
        layout.addWidget(tabs)

    def _build_recognition_tab(self) -> QWidget:
        tab = QWidget()
        layout = QVBoxLayout(tab)

        mode_bar = QHBoxLayout()
        self.mode_buttons = {}
        for mode, title in MODE_TITLES.items():
            button = QPushButton(title)
            button.setCheckable(True)
            button.clicked.connect(lambda _checked, m=mode: self.start_mode(m))
            mode_bar.addWidget(button)
            self.mode_buttons[mode] = button
        stop_button = QPushButton("Detener")
        stop_button.clicked.connect(self.stop_mode)
        mode_bar.addWidget(stop_button)
        layout.addLayout(mode_bar)

        body = QHBoxLayout()
        left = QVBoxLayout()
        self.camera_view = CameraView()
        left.addWidget(self.camera_view, stretch=1)
        self.gesture_label = QLabel("Sin gesto detectado")
        self.gesture_label.setStyleSheet("font-size: 20px;")
        left.addWidget(self.gesture_label)
        self.status_label = QLabel("Selecciona un modo para empezar")
        left.addWidget(self.status_label)
        body.addLayout(left, stretch=3)

        right = QVBoxLayout()
        self.error_panel = QWidget()
        error_layout = QHBoxLayout(self.error_panel)
        self.error_label = QLabel()
        self.error_label.setWordWrap(True)
        self.error_label.setStyleSheet("color: #e55;")
        self.retry_button = QPushButton("Reintentar")
        self.retry_button.clicked.connect(self.retry)
        error_layout.addWidget(self.error_label, stretch=1)
        error_layout.addWidget(self.retry_button)
        self.error_panel.hide()
        right.addWidget(self.error_panel)

        self.game_panel = GamePanel()
        self.game_panel.primary_button.clicked.connect(self._game_primary)
        self.game_panel.secondary_button.clicked.connect(self._game_secondary)
        self.game_panel.stats_button.clicked.connect(self._game_reset_stats)
        self.game_panel.hide()
        right.addWidget(self.game_panel)
        right.addStretch()
        body.addLayout(right, stretch=2)

        layout.addLayout(body)
        return tab

    def _build_processes_tab(self) -> QWidget:
        tab = QWidget()
        grid = QGridLayout(tab)
        for row, process_id in enumerate(self.app.processes.executables):
            title = QLabel(PROCESS_TITLES.get(process_id, process_id))
            status = QLabel("Detenido")
            button = QPushButton("Iniciar")
            button.clicked.connect(lambda _checked, pid=process_id: self.toggle_process(pid))
            grid.addWidget(title, row, 0)
            grid.addWidget(status, row, 1)
            grid.addWidget(button, row, 2)
            self._process_buttons[process_id] = button
            self._process_labels[process_id] = status
        grid.setRowStretch(len(self._process_buttons), 1)
        return tab

    # ------------------------------------------------------------------
    # Mode handling
    # ------------------------------------------------------------------

    def start_mode(self, mode: str):
        self._pending_mode = mode
        self._sync_mode_buttons(mode)
        self.status_label.setText(f"🔄 Iniciando {MODE_TITLES[mode]}...")
        self.error_panel.hide()
        self._run_in_background(lambda: self.app.consumers.activate(mode), mode)

    def retry(self):
        mode = self._pending_mode or self.app.consumers.active_name
        if mode is None:
            return
        self.status_label.setText("🔄 Reintentando...")
        self.error_panel.hide()
        self._run_in_background(lambda: self.app.consumers.retry(mode), mode)

    def stop_mode(self):
        self._pending_mode = None
        self._sync_mode_buttons(None)
        self.status_label.setText("Detenido")
        self._run_in_background(self.app.consumers.deactivate_all, None)

    def _run_in_background(self, work, mode):
        def runner():
            ok = bool(work())
            if mode is not None:
                self.signals.activation_done.emit(mode, ok)

        threading.Thread(target=runner, name="gestos-gui-activation", daemon=True).start()

    def _on_activation_done(self, mode: str, ok: bool):
        if mode != self._pending_mode:
            return
        consumer = self.app.consumers.get(mode)
        if ok:
            self.status_label.setText(f"✓ {MODE_TITLES[mode]} activo")
        else:
            self.status_label.setText(f"❌ {MODE_TITLES[mode]} no disponible")
            if consumer.error:
                self.error_label.setText(consumer.error)
                self.error_panel.show()

    def _sync_mode_buttons(self, active_mode):
        for mode, button in self.mode_buttons.items():
            button.setChecked(mode == active_mode)

    # ------------------------------------------------------------------
    # Game buttons
    # ------------------------------------------------------------------

    def _game_consumer(self):
        consumer = self.app.consumers.active_consumer
        if consumer is None or consumer.name == 'overlay':
            return None
        return consumer

    def _game_primary(self):
        consumer = self._game_consumer()
        if consumer is None:
            return
        if consumer.name == 'rock_paper_scissors':
            if consumer.game.state is GameState.RESULT:
                consumer.play_again()
            else:
                consumer.new_game()
        else:
            consumer.start_game()

    def _game_secondary(self):
        consumer = self._game_consumer()
        if consumer is not None and consumer.name == 'simon_says':
            consumer.reset_game()

    def _game_reset_stats(self):
        consumer = self._game_consumer()
        if consumer is not None:
            consumer.reset_stats()

    # ------------------------------------------------------------------
    # Processes
    # ------------------------------------------------------------------

    def toggle_process(self, process_id: str):
        if self.app.processes.get_process_status(process_id):
            self.app.processes.close_process(process_id)
        else:
            self.app.processes.execute(process_id)

    def _on_process_status(self, event: dict):
        process_id = event.get('processId')
        running = bool(event.get('isRunning'))
        if process_id in self._process_labels:
            self._process_labels[process_id].setText("Ejecutando" if running else "Detenido")
            self._process_buttons[process_id].setText("Detener" if running else "Iniciar")

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def refresh(self):
        consumer = self.app.consumers.active_consumer
        if consumer is None:
            self.camera_view.show_placeholder()
            self.gesture_label.setText("Sin gesto detectado")
            self.game_panel.hide()
            self._show_error(self.app.consumers.get(self._pending_mode) if self._pending_mode else None)
            return

        consumer.tick()

        stream = consumer.camera.stream
        frame = stream.latest_frame() if stream is not None else None
        if frame is not None:
            self.camera_view.update_frame(consumer.canvas.compose(frame))

        signal = consumer.current_gesture
        if signal is None:
            self.gesture_label.setText("Sin gesto detectado")
        else:
            emoji = GESTURE_EMOJIS.get(signal.gesture, "")
            self.gesture_label.setText(f"{emoji} {signal.label} ({signal.confidence}%) - Mano {signal.handedness}")

        self._show_error(consumer)
        if consumer.name == 'rock_paper_scissors':
            self._render_rock_paper_scissors(consumer.game)
        elif consumer.name == 'simon_says':
            self._render_simon_says(consumer.game)
        else:
            self.game_panel.hide()

    def _show_error(self, consumer):
        error = consumer.error if consumer is not None else None
        if error:
            self.error_label.setText(error)
            self.error_panel.show()
        else:
            self.error_panel.hide()

    def _render_rock_paper_scissors(self, game):
        panel = self.game_panel
        panel.show()
        panel.title.setText("Piedra, Papel o Tijeras")
        panel.secondary_button.hide()
        panel.primary_button.setText("Jugar de nuevo" if game.state is GameState.RESULT else "Nuevo juego")
        panel.primary_button.setEnabled(game.state in (GameState.WAITING, GameState.RESULT))

        if game.state is GameState.WAITING:
            panel.state_label.setText("¿Listo?")
            panel.detail_label.setText("✊ Piedra   ✋ Papel   ✌️ Tijeras")
        elif game.state is GameState.COUNTDOWN:
            panel.state_label.setText(str(game.countdown))
            panel.detail_label.setText("Prepárate...")
        elif game.state is GameState.PLAYING:
            panel.state_label.setText("¡Ahora!")
            panel.detail_label.setText("Haz tu gesto")
        else:
            panel.state_label.setText(RESULT_TEXT[game.result])
            suffix = " (al azar)" if game.substituted else ""
            panel.detail_label.setText(
                f"Tú: {CHOICE_EMOJIS[game.player_choice]} {game.player_choice.value}{suffix}   "
                f"Computadora: {CHOICE_EMOJIS[game.computer_choice]} {game.computer_choice.value}"
            )

        stats = game.stats
        panel.stats_label.setText(
            f"Victorias: {stats.player_wins}   Derrotas: {stats.computer_wins}   "
            f"Empates: {stats.ties}   Partidas: {stats.total_games}   "
            f"Porcentaje: {stats.win_percentage}%"
        )

    def _render_simon_says(self, game):
        panel = self.game_panel
        panel.show()
        panel.title.setText("Simón Dice")
        panel.secondary_button.show()
        panel.secondary_button.setText("Reiniciar juego")
        panel.primary_button.setText("Comenzar")
        panel.primary_button.setEnabled(game.state in (SimonState.WAITING, SimonState.FAILURE))

        if game.state is SimonState.WAITING:
            panel.state_label.setText("¿Listo?")
            panel.detail_label.setText(f"Nivel {game.stats.level}: memoriza {game.sequence_length()} gestos")
        elif game.state is SimonState.SHOWING:
            shown = game.showing_gesture
            panel.state_label.setText(GESTURE_EMOJIS.get(shown, "") if shown else "…")
            position = f"{game.show_index + 1}/{len(game.sequence)}" if game.show_index >= 0 else ""
            panel.detail_label.setText(f"{display_name(shown)} {position}".strip())
        elif game.state is SimonState.COUNTDOWN:
            panel.state_label.setText(str(game.countdown))
            panel.detail_label.setText("Repite la secuencia")
        elif game.state is SimonState.PLAYING:
            done = " ".join(GESTURE_EMOJIS.get(g, "") for g in game.player_inputs)
            panel.state_label.setText(f"{len(game.player_inputs)}/{len(game.sequence)}")
            panel.detail_label.setText(done or "Tu turno")
        elif game.state is SimonState.SUCCESS:
            panel.state_label.setText("¡Correcto!")
            panel.detail_label.setText(f"Siguiente nivel: {game.stats.level}")
        else:
            panel.state_label.setText("¡Fallaste!")
            panel.detail_label.setText(" ".join(GESTURE_EMOJIS.get(g, "") for g in game.sequence))

        stats = game.stats
        panel.stats_label.setText(
            f"Nivel: {stats.level}   Mejor nivel: {stats.best_level}   Partidas: {stats.total_games}   "
            f"Racha: {stats.streak}   Mejor racha: {stats.best_streak}"
        )

    def closeEvent(self, event):
        self.timer.stop()
        self.app.processes.remove_status_listener(self._status_callback)
        super().closeEvent(event)


def run_gui(app, initial_mode=None) -> int:
    """
    Run the GestOS window. Blocks until the window is closed.

    Args:
        app: GestOSApplication instance
        initial_mode: consumer to activate once the window is shown
    """
    qt_app = QApplication.instance() or QApplication(sys.argv)

    window = MainWindow(app)
    window.show()
    if initial_mode:
        window.start_mode(initial_mode)

    exit_code = qt_app.exec()
    print(f"📺 GUI closed with exit code: {exit_code}")
    return exit_code
