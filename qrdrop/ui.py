import html

# All URLs in the page are relative so it works behind the random URL prefix.
PAGE_TEMPLATE = '''<!DOCTYPE html>
<html>
<head>
    <title>qrdrop</title>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <style>
        :root {
            --primary: #2563eb;
            --primary-dark: #1d4ed8;
            --success: #059669;
            --danger: #dc2626;
            --background: #f8fafc;
            --surface: #ffffff;
            --surface-2: #f1f5f9;
            --text: #1e293b;
            --text-muted: #64748b;
            --border: #e2e8f0;
        }
        * { margin: 0; padding: 0; box-sizing: border-box; }
        body {
            font-family: 'Inter', 'Segoe UI', system-ui, sans-serif;
            background: var(--background);
            color: var(--text);
            padding: 16px;
            line-height: 1.5;
        }
        .container { max-width: 720px; margin: 0 auto; }
        h1 { font-size: 1.75rem; margin-bottom: 4px; }
        .subtitle { color: var(--text-muted); margin-bottom: 24px; }
        .section {
            background: var(--surface);
            border: 1px solid var(--border);
            border-radius: 8px;
            padding: 20px;
            margin-bottom: 20px;
        }
        .section h2 { font-size: 1.1rem; margin-bottom: 12px; }
        .drop-zone {
            border: 2px dashed var(--success);
            border-radius: 8px;
            padding: 24px;
            text-align: center;
            cursor: pointer;
        }
        .drop-zone.hover { background: #ecfdf5; }
        .btn {
            background: var(--primary);
            color: white;
            border: none;
            padding: 8px 16px;
            border-radius: 6px;
            cursor: pointer;
            text-decoration: none;
            display: inline-block;
            font-size: 14px;
        }
        .btn:hover { background: var(--primary-dark); }
        table { width: 100%; border-collapse: collapse; }
        td { padding: 8px 4px; border-bottom: 1px solid var(--border); }
        td.size { color: var(--text-muted); text-align: right; white-space: nowrap; }
        a.file-link { color: var(--primary); text-decoration: none; word-break: break-all; }
        .progress { height: 6px; background: var(--border); border-radius: 3px; margin-top: 12px; display: none; }
        .progress-fill { height: 100%; width: 0; background: var(--success); border-radius: 3px; }
        #status { margin-top: 8px; font-size: 14px; }
        .error { color: var(--danger); }
        .empty { color: var(--text-muted); }
    </style>
</head>
<body>
    <div class="container">
        <h1>qrdrop</h1>
        <div class="subtitle">{{title}}</div>

        <div class="section">
            <h2>Files</h2>
            <table id="fileList"><tr><td class="empty">Loading...</td></tr></table>
            <p style="margin-top: 12px;"><a class="btn" href="download-all" id="downloadAll">Download all (zip)</a></p>
        </div>

        <div class="section">
            <h2>Send files</h2>
            <div class="drop-zone" id="dropZone">
                Drop files here or click to choose
                <input type="file" id="fileInput" multiple style="display: none;">
            </div>
            <div class="progress" id="progress"><div class="progress-fill" id="progressFill"></div></div>
            <div id="status"></div>
        </div>
    </div>
    <script>
        function formatSize(size) {
            if (size > 1024 * 1024 * 1024) return (size / (1024 * 1024 * 1024)).toFixed(1) + ' GB';
            if (size > 1024 * 1024) return (size / (1024 * 1024)).toFixed(1) + ' MB';
            if (size > 1024) return (size / 1024).toFixed(1) + ' KB';
            return size + ' bytes';
        }

        function loadFiles() {
            fetch('files').then(function (resp) { return resp.json(); }).then(function (files) {
                var table = document.getElementById('fileList');
                table.innerHTML = '';
                if (files.length === 0) {
                    table.innerHTML = '<tr><td class="empty">No files shared</td></tr>';
                    document.getElementById('downloadAll').style.display = 'none';
                    return;
                }
                files.forEach(function (file) {
                    var row = document.createElement('tr');
                    var name = document.createElement('td');
                    var link = document.createElement('a');
                    link.className = 'file-link';
                    link.href = 'files/' + encodeURIComponent(file.name);
                    link.textContent = file.name;
                    name.appendChild(link);
                    var size = document.createElement('td');
                    size.className = 'size';
                    size.textContent = formatSize(file.size);
                    row.appendChild(name);
                    row.appendChild(size);
                    table.appendChild(row);
                });
            }).catch(function (err) {
                document.getElementById('fileList').innerHTML = '<tr><td class="error">Could not load files</td></tr>';
            });
        }

        function upload(fileList) {
            if (!fileList || fileList.length === 0) return;
            var form = new FormData();
            for (var i = 0; i < fileList.length; i++) form.append('file', fileList[i]);

            var status = document.getElementById('status');
            var progress = document.getElementById('progress');
            var fill = document.getElementById('progressFill');
            status.className = '';
            status.textContent = 'Uploading...';
            progress.style.display = 'block';
            fill.style.width = '0';

            var xhr = new XMLHttpRequest();
            xhr.open('POST', 'upload');
            xhr.upload.onprogress = function (e) {
                if (e.lengthComputable) fill.style.width = (e.loaded / e.total * 100) + '%';
            };
            xhr.onload = function () {
                progress.style.display = 'none';
                var result = {};
                try { result = JSON.parse(xhr.responseText); } catch (e) { result = {success: false, error: xhr.responseText}; }
                if (result.success) {
                    status.textContent = 'Sent: ' + result.filenames.join(', ');
                    if (result.errors && result.errors.length > 0) {
                        status.textContent += ' (failed: ' + result.errors.map(function (e) { return e.filename; }).join(', ') + ')';
                    }
                } else {
                    status.className = 'error';
                    status.textContent = result.error || 'Upload failed';
                }
            };
            xhr.onerror = function () {
                progress.style.display = 'none';
                status.className = 'error';
                status.textContent = 'Upload failed';
            };
            xhr.send(form);
        }

        var dropZone = document.getElementById('dropZone');
        var fileInput = document.getElementById('fileInput');
        dropZone.addEventListener('click', function () { fileInput.click(); });
        fileInput.addEventListener('change', function () { upload(fileInput.files); fileInput.value = ''; });
        dropZone.addEventListener('dragover', function (e) { e.preventDefault(); dropZone.classList.add('hover'); });
        dropZone.addEventListener('dragleave', function () { dropZone.classList.remove('hover'); });
        dropZone.addEventListener('drop', function (e) {
            e.preventDefault();
            dropZone.classList.remove('hover');
            upload(e.dataTransfer.files);
        });

        loadFiles();
    </script>
</body>
</html>
'''


def render_page(title:str = 'Local network file sharing'):
    return PAGE_TEMPLATE.replace('{{title}}', html.escape(title))
