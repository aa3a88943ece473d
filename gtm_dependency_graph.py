#!/usr/bin/env python3
"""
GTM Variable Dependency Network Graph
Visualizes which tags, triggers, clients and variables reference which variables.
Edges that are part of a circular reference are drawn in red.
"""

import plotly.graph_objects as go
import sys
import os
from datetime import datetime
from html import escape
import networkx as nx
import numpy as np

from gtm_container import GTMContainer
from gtm_exceptions import InvalidContainerError

# Color scheme for component types
COMPONENT_COLORS = {
    'tag': '#ff7f0e',              # Orange for tags
    'trigger': '#2ca02c',          # Green for triggers
    'client': '#d62728',           # Red for clients
    'builtin': '#e377c2',          # Pink for built-in variables
    'internal': '#7f7f7f',         # Gray for internal variables
    'unknown': '#bcbd22'           # Yellow-green for undefined references
}

# Variable nodes are coloured by their GTM type code
VARIABLE_TYPE_COLORS = {
    'v': '#1f77b4',                # Data Layer Variable
    'jsm': '#9467bd',              # Custom JavaScript
    'c': '#17becf',                # Constant
    'u': '#aec7e8',                # URL
    'k': '#c5b0d5',                # Cookie
    'd': '#8c564b',                # DOM Element
    'smm': '#393b79',              # Lookup Table
    'remm': '#5254a3',             # Regex Table
    'gas': '#637939',              # Google Analytics Settings
    'ed': '#8ca252',               # Event Data
    'custom_template': '#bd9e39',  # Custom template variables
    'other': '#6baed6'
}

VARIABLE_TYPE_NAMES = {
    'v': 'Data Layer Variable',
    'jsm': 'Custom JavaScript',
    'c': 'Constant',
    'u': 'URL',
    'k': 'Cookie',
    'd': 'DOM Element',
    'smm': 'Lookup Table',
    'remm': 'Regex Table',
    'gas': 'Google Analytics Settings',
    'ed': 'Event Data',
    'custom_template': 'Custom Template Variable',
    'other': 'Other Variable'
}

CYCLE_COLOR = '#e41a1c'

# Node sizes
NODE_SIZES = {
    'variable': 20,
    'tag': 25,
    'trigger': 25,
    'client': 25,
    'builtin': 18,
    'internal': 18,
    'unknown': 15
}


def get_variable_color_key(var_type):
    if not var_type:
        return 'other'
    if var_type.startswith('cvt_'):
        return 'custom_template'
    return var_type if var_type in VARIABLE_TYPE_COLORS else 'other'


def find_cycle_edges(reference_graph):
    """Edges that lie on at least one variable reference cycle"""
    cycle_edges = set()
    for component in nx.strongly_connected_components(reference_graph):
        if len(component) > 1:
            cycle_edges.update(
                (u, v) for u, v in reference_graph.subgraph(component).edges()
            )
    cycle_edges.update(nx.selfloop_edges(reference_graph))
    return cycle_edges


def _add_variable_node(G, name, container):
    if name in G:
        return
    variable = container.get_variable_by_name(name)
    if variable is not None:
        color_key = get_variable_color_key(variable.get('type', ''))
        G.add_node(name, node_type='variable', color_key=color_key, label=name,
                   size=NODE_SIZES['variable'])
    elif name.startswith('_'):
        G.add_node(name, node_type='internal', color_key='internal', label=name, size=NODE_SIZES['internal'])
    elif any(b.get('name') == name for b in container.built_in_variables):
        G.add_node(name, node_type='builtin', color_key='builtin', label=name, size=NODE_SIZES['builtin'])
    else:
        G.add_node(name, node_type='unknown', color_key='unknown', label=name, size=NODE_SIZES['unknown'])


def build_dependency_graph(container: GTMContainer, max_nodes=500):
    """Build a directed network graph from the container's reference edges

    Args:
        container: Loaded GTM container
        max_nodes: Maximum number of variables to include (top by connection count)
    """
    G = nx.DiGraph()

    edges = container.reference_edges
    degree = {}
    for edge in edges:
        degree[edge.variable_name] = degree.get(edge.variable_name, 0) + 1
        if edge.source_kind == 'variable':
            degree[edge.source_name] = degree.get(edge.source_name, 0) + 1

    # If too many, keep the most connected variables
    keep = None
    if len(degree) > max_nodes:
        ranked = sorted(degree.items(), key=lambda x: x[1], reverse=True)
        keep = {name for name, _ in ranked[:max_nodes]}

    cycle_edges = find_cycle_edges(container.reference_graph)

    for edge in edges:
        if keep is not None and edge.variable_name not in keep:
            continue
        _add_variable_node(G, edge.variable_name, container)

        if edge.source_kind == 'variable':
            if keep is not None and edge.source_name not in keep:
                continue
            _add_variable_node(G, edge.source_name, container)
            source = edge.source_name
        else:
            source = f"{edge.source_kind}:{edge.source_name}"
            if source not in G:
                G.add_node(source, node_type=edge.source_kind, color_key=edge.source_kind,
                           label=edge.source_name, size=NODE_SIZES.get(edge.source_kind, 15))

        in_cycle = edge.source_kind == 'variable' and (edge.source_name, edge.variable_name) in cycle_edges
        G.add_edge(source, edge.variable_name, in_cycle=in_cycle)

    for u, v in G.edges():
        if G.edges[u, v]['in_cycle']:
            G.nodes[u]['in_cycle'] = True
            G.nodes[v]['in_cycle'] = True

    return G


def _edge_coordinates(G, pos, in_cycle):
    edge_x = []
    edge_y = []
    for u, v, attrs in G.edges(data=True):
        if attrs.get('in_cycle', False) != in_cycle:
            continue
        x0, y0 = pos[u]
        x1, y1 = pos[v]
        edge_x.extend([x0, x1, None])
        edge_y.extend([y0, y1, None])
    return edge_x, edge_y


def node_color(node_data):
    key = node_data.get('color_key', 'unknown')
    if node_data['node_type'] == 'variable':
        return VARIABLE_TYPE_COLORS.get(key, VARIABLE_TYPE_COLORS['other'])
    return COMPONENT_COLORS.get(key, COMPONENT_COLORS['unknown'])


def create_network_visualization(G, output_filename):
    """Create an interactive network graph visualization"""
    num_nodes = len(G.nodes())
    undirected = G.to_undirected()

    # Adjust layout parameters based on graph size
    if num_nodes > 100:
        pos = nx.kamada_kawai_layout(undirected, scale=5)
    elif num_nodes > 50:
        pos = nx.spring_layout(undirected, k=5 / np.sqrt(num_nodes), iterations=100, scale=3, seed=42)
    else:
        pos = nx.spring_layout(undirected, k=3, iterations=50, scale=2, seed=42)

    # Extract node information
    node_x = []
    node_y = []
    node_labels = []
    node_colors = []
    node_sizes = []
    node_borders = []
    hover_texts = []

    for node in G.nodes():
        x, y = pos[node]
        node_x.append(x)
        node_y.append(y)

        node_data = G.nodes[node]
        node_labels.append(node_data['label'])
        node_colors.append(node_color(node_data))
        node_sizes.append(node_data.get('size', 15))
        node_borders.append(CYCLE_COLOR if node_data.get('in_cycle') else 'white')

        if node_data['node_type'] == 'variable':
            type_text = VARIABLE_TYPE_NAMES.get(node_data['color_key'], 'Variable')
        else:
            type_text = node_data['node_type'].title()
        hover_text = f"<b>{escape(node_data['label'])}</b><br>"
        hover_text += f"Type: {type_text}<br>"
        hover_text += f"Referenced by: {G.in_degree(node)} | References: {G.out_degree(node)}"
        if node_data.get('in_cycle'):
            hover_text += "<br><b>Part of a circular reference</b>"
        hover_texts.append(hover_text)

    # Only show labels for smaller graphs
    show_text = num_nodes < 50

    node_trace = go.Scatter(
        x=node_x, y=node_y,
        mode='markers+text' if show_text else 'markers',
        text=node_labels if show_text else None,
        textposition="top center",
        textfont=dict(size=8),
        hoverinfo='text',
        hovertext=hover_texts,
        showlegend=False,
        marker=dict(
            showscale=False,
            color=node_colors,
            size=[s * (0.7 if num_nodes > 100 else 1.0) for s in node_sizes],
            line=dict(width=2, color=node_borders)
        )
    )

    edge_x, edge_y = _edge_coordinates(G, pos, in_cycle=False)
    edge_trace = go.Scatter(
        x=edge_x, y=edge_y,
        line=dict(width=0.5, color='#888'),
        hoverinfo='none',
        mode='lines',
        showlegend=False
    )

    cycle_x, cycle_y = _edge_coordinates(G, pos, in_cycle=True)
    cycle_trace = go.Scatter(
        x=cycle_x, y=cycle_y,
        line=dict(width=2.5, color=CYCLE_COLOR),
        hoverinfo='none',
        mode='lines',
        name='Circular reference'
    )

    # Legend entries for the types present in the graph
    present = {}
    for node in G.nodes():
        node_data = G.nodes[node]
        if node_data['node_type'] == 'variable':
            name = VARIABLE_TYPE_NAMES.get(node_data['color_key'], 'Variable')
        else:
            name = node_data['node_type'].title()
        present.setdefault(name, node_color(node_data))
    legend_traces = [
        go.Scatter(x=[None], y=[None], mode='markers', marker=dict(size=10, color=color),
                   showlegend=True, name=name)
        for name, color in sorted(present.items())
    ]

    fig = go.Figure(data=[edge_trace, cycle_trace, node_trace] + legend_traces)

    fig.update_layout(
        title={
            'text': f'GTM Variable Dependencies Network ({num_nodes} nodes, {len(G.edges())} connections)',
            'x': 0.5,
            'xanchor': 'center',
            'font': {'size': 20}
        },
        showlegend=True,
        legend=dict(
            orientation="v",
            yanchor="top",
            y=1,
            xanchor="left",
            x=1.02,
            bgcolor="rgba(255, 255, 255, 0.9)",
            bordercolor="Black",
            borderwidth=1,
            font=dict(size=10)
        ),
        hovermode='closest',
        margin=dict(b=40, l=40, r=180, t=80),
        xaxis=dict(showgrid=False, zeroline=False, showticklabels=False),
        yaxis=dict(showgrid=False, zeroline=False, showticklabels=False),
        plot_bgcolor='#fafafa',
        width=1600,
        height=1000,
        dragmode='pan'
    )

    config = {
        'toImageButtonOptions': {
            'format': 'png',
            'filename': 'gtm_dependencies',
            'height': 1600,
            'width': 2000,
            'scale': 2
        },
        'displaylogo': False
    }

    total_nodes = len(G.nodes())
    total_edges = len(G.edges())
    cycle_edge_count = len([1 for _, _, a in G.edges(data=True) if a.get('in_cycle')])
    node_type_counts = {}
    for node in G.nodes():
        node_type = G.nodes[node]['node_type']
        node_type_counts[node_type] = node_type_counts.get(node_type, 0) + 1

    html_template = """
    <!DOCTYPE html>
    <html>
    <head>
        <title>GTM Variable Dependencies Network</title>
        <script src="https://cdn.plot.ly/plotly-2.27.0.min.js"></script>
        <style>
            body {{
                font-family: Arial, sans-serif;
                margin: 0;
                padding: 20px;
                background-color: #f5f5f5;
            }}
            .container {{
                max-width: 1500px;
                margin: 0 auto;
                background-color: white;
                padding: 20px;
                border-radius: 10px;
                box-shadow: 0 2px 10px rgba(0,0,0,0.1);
            }}
            h1 {{
                color: #333;
                text-align: center;
            }}
            .stats {{
                margin: 20px 0;
                padding: 15px;
                background-color: #f8f9fa;
                border-radius: 5px;
            }}
            .stats-grid {{
                display: grid;
                grid-template-columns: repeat(auto-fit, minmax(200px, 1fr));
                gap: 15px;
            }}
            .stat-item {{
                padding: 10px;
                background-color: white;
                border-radius: 5px;
                border: 1px solid #dee2e6;
            }}
            .stat-label {{
                font-size: 12px;
                color: #6c757d;
                text-transform: uppercase;
                margin-bottom: 5px;
            }}
            .stat-value {{
                font-size: 24px;
                font-weight: bold;
                color: #333;
            }}
            .info {{
                margin-top: 20px;
                padding: 15px;
                background-color: #e9ecef;
                border-radius: 5px;
                font-size: 14px;
                line-height: 1.6;
            }}
        </style>
    </head>
    <body>
        <div class="container">
            <h1>GTM Variable Dependencies Network</h1>

            <div class="stats">
                <h3>Network Statistics</h3>
                <div class="stats-grid">
                    <div class="stat-item">
                        <div class="stat-label">Total Nodes</div>
                        <div class="stat-value">{total_nodes}</div>
                    </div>
                    <div class="stat-item">
                        <div class="stat-label">Total Connections</div>
                        <div class="stat-value">{total_edges}</div>
                    </div>
                    <div class="stat-item">
                        <div class="stat-label" style="color: {cycle_color};">Circular Reference Edges</div>
                        <div class="stat-value">{cycle_edges}</div>
                    </div>
                    {node_type_stats}
                </div>
            </div>

            <div id="myDiv">{plot_div}</div>

            <div class="info">
                <h3>Understanding the Network</h3>
                <ul>
                    <li><strong>Nodes</strong> = GTM components (variables, tags, triggers, clients)</li>
                    <li><strong>Arrows</strong> = References (the source uses the target variable via {{{{Name}}}})</li>
                    <li><strong>Colors</strong> = Variable type or component type (see legend on the right)</li>
                    <li><strong>Red lines</strong> = References that form a circular dependency</li>
                </ul>
                <p><strong>Tip for Large Graphs:</strong> Zoom in to specific areas to see details. Labels only appear for graphs with less than 50 nodes to maintain readability.</p>
            </div>

            <div class="info">
                <p><em>Generated: {timestamp}</em></p>
            </div>
        </div>
    </body>
    </html>
    """

    node_type_stats_html = ""
    for node_type, count in sorted(node_type_counts.items()):
        color = COMPONENT_COLORS.get(node_type, VARIABLE_TYPE_COLORS['v'])
        node_type_stats_html += f"""
        <div class="stat-item">
            <div class="stat-label" style="color: {color};">{node_type.title()}</div>
            <div class="stat-value">{count}</div>
        </div>
        """

    plot_html = fig.to_html(include_plotlyjs=False, full_html=False, div_id="networkPlot", config=config)

    html_content = html_template.format(
        total_nodes=total_nodes,
        total_edges=total_edges,
        cycle_color=CYCLE_COLOR,
        cycle_edges=cycle_edge_count,
        node_type_stats=node_type_stats_html,
        plot_div=plot_html,
        timestamp=datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    )

    with open(output_filename, 'w', encoding='utf-8') as f:
        f.write(html_content)

    print(f"✅ Network graph generated: {output_filename}")
    print(f"📊 Graph contains {total_nodes} nodes and {total_edges} connections ({cycle_edge_count} in cycles)")
    print(f"📂 File location: {os.path.abspath(output_filename)}")
    print(f"🌐 Open in browser: file:///{os.path.abspath(output_filename).replace(os.sep, '/')}")


def main():
    """Main function"""
    if len(sys.argv) < 2:
        print("Usage: python gtm_dependency_graph.py <path_to_gtm_container.json> [output_filename.html]")
        sys.exit(1)

    input_filename = sys.argv[1]
    try:
        container = GTMContainer.load(input_filename)
    except FileNotFoundError:
        print(f"Error: File '{input_filename}' not found.")
        sys.exit(1)
    except InvalidContainerError as e:
        print(f"Error: {e}")
        sys.exit(1)

    if len(sys.argv) > 2:
        output_filename = sys.argv[2]
    else:
        base_name = os.path.basename(input_filename)
        if base_name.endswith('.json'):
            base_name = base_name[:-5]
        output_filename = f'gtm_graph_{base_name}.html'

    total_vars = len(container.variables)
    print(f"Found {total_vars} variables in the container...")

    max_nodes = 500
    if total_vars > 200:
        print(f"\n⚠️  Large container detected ({total_vars} variables)")
        print("Including only the 200 most connected variables")
        max_nodes = 200

    print("\nBuilding dependency graph...")
    G = build_dependency_graph(container, max_nodes=max_nodes)

    if len(G.nodes()) == 0:
        print("❌ No dependencies found to visualize.")
        sys.exit(1)

    print(f"Creating visualization with {len(G.nodes())} nodes and {len(G.edges())} connections...")
    create_network_visualization(G, output_filename)


if __name__ == '__main__':
    main()
